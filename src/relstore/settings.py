"""Settings for one configured relstore instance.

Values come from keyword arguments, ``RELSTORE_*`` environment variables, or a
``.env`` file, in that order of precedence. The embedding application usually
loads its own configuration file and passes the values in::

    settings = StoreSettings(backend="mariadb", host="db", database="suite",
                             username="suite", password="...")

Tags:
    settings, configuration, pydantic, environment, relstore
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relstore.backends.types import BackendDescriptor, BackendKind, parse_kind, resolve


@dataclass(frozen=True)
class Credentials:
    """Connection target for networked backends. The password never appears in repr."""

    host: str
    port: int
    database: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)


class StoreSettings(BaseSettings):
    """Configuration for one database instance.

    Fields
    ──────
    backend               : Backend kind (or alias: sqlite, h2, memory, mariadb, mysql)
    file_path             : Database file for the embedded file backend
    memory_name           : Optional name for a shared in-memory database
    host/port/database    : Networked endpoint
    username/password     : Networked credentials
    pool_min_size         : Connections opened on connect (networked)
    pool_max_size         : Upper bound on pooled connections (networked)
    pool_lease_timeout_ms : How long a lease may wait before PoolExhaustedError
    async_workers         : Worker threads used by the async executor
    batch_atomic          : Override the backend's default batch mode
    """

    model_config = SettingsConfigDict(
        env_prefix="RELSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────────────
    backend: BackendKind = BackendKind.EMBEDDED_FILE

    # ── Embedded ─────────────────────────────────────────────────
    file_path: Path = Field(
        default_factory=lambda: Path("data") / "relstore.db",
        description="SQLite database file (parent directories are created)",
    )
    memory_name: str | None = None

    # ── Networked ────────────────────────────────────────────────
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: SecretStr | None = None
    connect_timeout: float = Field(default=10.0, gt=0)

    # ── Pool ─────────────────────────────────────────────────────
    pool_min_size: int = Field(default=2, ge=0)
    pool_max_size: int = Field(default=10, ge=1)
    pool_lease_timeout_ms: int = Field(default=30_000, gt=0)
    keepalive_seconds: float = Field(default=120.0, ge=0)

    # ── Reconnect (opening physical connections only) ───────────
    reconnect_attempts: int = Field(default=3, ge=0)
    reconnect_base_delay: float = Field(default=0.5, ge=0)
    reconnect_max_delay: float = Field(default=10.0, ge=0)

    # ── Execution ────────────────────────────────────────────────
    async_workers: int = Field(default=4, ge=1)
    batch_atomic: bool | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("backend", mode="before")
    @classmethod
    def _parse_backend(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_kind(value)
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> StoreSettings:
        if self.pool_min_size > self.pool_max_size:
            raise ValueError(
                f"pool_min_size ({self.pool_min_size}) exceeds pool_max_size ({self.pool_max_size})"
            )
        if self.descriptor.is_networked:
            missing = [name for name in ("host", "database") if not getattr(self, name)]
            if missing:
                raise ValueError(f"{self.backend.value} backend requires: {', '.join(missing)}")
        return self

    @property
    def descriptor(self) -> BackendDescriptor:
        return resolve(self.backend)

    @property
    def lease_timeout(self) -> float:
        """Lease timeout in seconds."""
        return self.pool_lease_timeout_ms / 1000.0

    @property
    def atomic_batches(self) -> bool:
        if self.batch_atomic is not None:
            return self.batch_atomic
        return self.descriptor.atomic_batches

    def credentials(self) -> Credentials:
        """Networked connection target. Only meaningful for networked backends."""
        return Credentials(
            host=self.host or "localhost",
            port=self.port or self.descriptor.default_port or 0,
            database=self.database or "",
            username=self.username,
            password=self.password.get_secret_value() if self.password else None,
        )

    def url(self) -> str:
        """Connection URL with the password redacted, for logs and the CLI."""
        descriptor = self.descriptor
        match self.backend:
            case BackendKind.EMBEDDED_FILE:
                return f"{descriptor.url_prefix}{self.file_path}"
            case BackendKind.EMBEDDED_MEMORY:
                return f"{descriptor.url_prefix}{self.memory_name or ''}"
            case _:
                creds = self.credentials()
                user = f"{creds.username}:***@" if creds.username else ""
                return f"{descriptor.url_prefix}{user}{creds.host}:{creds.port}/{creds.database}"


__all__ = [
    "Credentials",
    "StoreSettings",
]

"""
CLI layer for relstore.

Provides a Typer application for checking a configured backend from a
shell: connectivity, ad-hoc queries and statements.  All execution goes
through ``relstore.database``; this package handles only terminal
transport: argument parsing, coloured output, and table formatting.

Entry point::

    relstore --help
"""

from relstore.cli.app import app

__all__ = ["app"]

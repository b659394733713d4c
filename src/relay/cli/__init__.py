"""
CLI layer for relay.

A Typer application whose commands delegate to :class:`RelayContainer`
components. This package handles only terminal transport: argument
parsing, coloured output, and table formatting.

Entry point::

    relay --help
"""

from relay.cli.app import app

__all__ = ["app"]

"""
CLI layer for embedguard.

Entry point::

    embedguard --help
"""

from embedguard.cli.app import app

__all__ = ["app"]

"""
haunti.cli
----------

Typer entry point (`haunti`, or `python -m haunti.cli`).
"""

from .main import app, run

__all__ = ["app", "run"]

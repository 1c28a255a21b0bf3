"""Command line interface for the refinery."""

from .main import app

__all__ = ["app"]

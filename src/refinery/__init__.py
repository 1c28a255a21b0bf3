"""Lock and merge queue coordination for a town of coding agents."""

__version__ = "0.1.0"

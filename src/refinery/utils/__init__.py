"""Shared helpers: atomic file IO, durations, logging setup."""

from .atomic import atomic_create_json, atomic_write_json, read_json_file
from .log_setup import configure_logging
from .timeutil import parse_duration, utcnow

__all__ = [
    "atomic_create_json",
    "atomic_write_json",
    "read_json_file",
    "configure_logging",
    "parse_duration",
    "utcnow",
]

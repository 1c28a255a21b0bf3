"""
Configuration management for the refinery.

This module provides:
- Process settings loaded from the environment
- The rig registry and per-rig merge queue settings
- Workspace path resolution
"""

from .config_manager import ConfigManager
from .settings import (
    ON_CONFLICT_ASSIGN_BACK,
    ON_CONFLICT_AUTO_REBASE,
    BeadsConfig,
    LoggingSettings,
    MergeQueueConfig,
    RefinerySettings,
    RigEntry,
    RigsConfig,
    RigSettings,
)

__all__ = [
    "ConfigManager",
    "ON_CONFLICT_ASSIGN_BACK",
    "ON_CONFLICT_AUTO_REBASE",
    "BeadsConfig",
    "LoggingSettings",
    "MergeQueueConfig",
    "RefinerySettings",
    "RigEntry",
    "RigsConfig",
    "RigSettings",
]

"""
Configuration manager for the refinery.

This module resolves the town workspace layout and loads the rig registry
and per-rig settings files.
"""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from ..constants import (
    DEFAULT_ISSUE_PREFIX,
    DIR_ISSUES,
    DIR_LOCKS,
    DIR_MAIL,
    DIR_MAYOR,
    DIR_REFINERY,
    DIR_RIG,
    DIR_RUNTIME,
    DIR_SETTINGS,
    FILE_CHECKPOINT,
    FILE_CONFIG_JSON,
    FILE_EVENTS,
    FILE_LEDGER,
    FILE_RIGS_JSON,
)
from ..errors import ConfigError
from ..utils.atomic import atomic_write_json
from .settings import RefinerySettings, RigSettings, RigsConfig


class ConfigManager:
    """Manages configuration loading and path resolution for one town."""

    def __init__(self, settings: RefinerySettings | None = None):
        """Initialize the configuration manager.

        Args:
            settings: Process settings. Loaded from the environment if None.
        """
        self.settings = settings or RefinerySettings()
        self.town_root = Path(self.settings.town_root).resolve()
        self._rigs: RigsConfig | None = None

    # Paths

    @property
    def rigs_path(self) -> Path:
        return self.town_root / DIR_MAYOR / FILE_RIGS_JSON

    @property
    def town_runtime(self) -> Path:
        return self.town_root / DIR_RUNTIME

    @property
    def locks_dir(self) -> Path:
        return self.town_runtime / DIR_LOCKS

    @property
    def mail_dir(self) -> Path:
        return self.town_runtime / DIR_MAIL

    def rig_path(self, rig: str) -> Path:
        return self.town_root / rig

    def rig_settings_path(self, rig: str) -> Path:
        return self.rig_path(rig) / DIR_SETTINGS / FILE_CONFIG_JSON

    def refinery_clone(self, rig: str) -> Path:
        """Working clone the refinery rebases and merges in."""
        return self.rig_path(rig) / DIR_REFINERY / DIR_RIG

    def refinery_state_dir(self, rig: str) -> Path:
        return self.rig_path(rig) / DIR_RUNTIME / DIR_REFINERY

    def checkpoint_path(self, rig: str) -> Path:
        return self.refinery_state_dir(rig) / FILE_CHECKPOINT

    def events_path(self, rig: str) -> Path:
        return self.refinery_state_dir(rig) / FILE_EVENTS

    def ledger_path(self, rig: str) -> Path:
        return self.refinery_state_dir(rig) / FILE_LEDGER

    def issues_dir(self, rig: str) -> Path:
        return self.rig_path(rig) / DIR_RUNTIME / DIR_ISSUES

    # Registry and settings

    def load_rigs(self) -> RigsConfig:
        """Load the rig registry. A missing registry means no rigs."""
        if self._rigs is not None:
            return self._rigs

        if not self.rigs_path.exists():
            logger.warning(f"Rig registry not found at {self.rigs_path}")
            self._rigs = RigsConfig()
            return self._rigs

        try:
            data = json.loads(self.rigs_path.read_text(encoding="utf-8"))
            self._rigs = RigsConfig.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise ConfigError(f"Invalid rig registry {self.rigs_path}: {e}") from e
        return self._rigs

    def rig_names(self) -> list[str]:
        return sorted(self.load_rigs().rigs)

    def load_rig_settings(self, rig: str) -> RigSettings:
        """Load and validate a rig's settings, falling back to defaults."""
        path = self.rig_settings_path(rig)
        if not path.exists():
            logger.info(f"No settings for rig {rig}, using merge queue defaults")
            return RigSettings()

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return RigSettings.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise ConfigError(f"Invalid rig settings {path}: {e}") from e

    def save_rig_settings(self, rig: str, settings: RigSettings) -> None:
        """Validate and persist a rig's settings."""
        validated = RigSettings.model_validate(settings.model_dump())
        atomic_write_json(self.rig_settings_path(rig), validated.model_dump(mode="json"))

    def issue_prefix(self, rig: str) -> str:
        """Issue id prefix for a rig, from its settings or the registry."""
        rig_settings = self.load_rig_settings(rig)
        if rig_settings.beads is not None:
            return rig_settings.beads.prefix
        entry = self.load_rigs().rigs.get(rig)
        if entry is not None and entry.beads is not None:
            return entry.beads.prefix
        return DEFAULT_ISSUE_PREFIX

"""
Pydantic settings models for the refinery.

Process-level settings come from the environment (``REFINERY_`` prefix) and
an optional ``.env`` file. Per-rig behaviour lives in the rig settings file
(``<rig>/settings/config.json``) and is modelled by RigSettings.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import (
    BRANCH_CREW_PREFIX,
    BRANCH_MAIN,
    BRANCH_POLECAT_PREFIX,
    DEFAULT_REMOTE,
)
from ..utils.timeutil import parse_duration

CURRENT_RIGS_VERSION = 1
CURRENT_RIG_SETTINGS_VERSION = 1

ON_CONFLICT_ASSIGN_BACK = "assign_back"
ON_CONFLICT_AUTO_REBASE = "auto_rebase"


class MergeQueueConfig(BaseModel):
    """Merge queue settings for a rig."""

    enabled: bool = True
    target_branch: str = BRANCH_MAIN
    on_conflict: Literal["assign_back", "auto_rebase"] = ON_CONFLICT_ASSIGN_BACK
    run_tests: bool = True
    test_command: str = "go test ./..."
    delete_merged_branches: bool = True
    retry_flaky_tests: int = Field(default=1, ge=0)
    poll_interval: str = "30s"
    max_concurrent: int = Field(default=1, ge=0)

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: str) -> str:
        parse_duration(v)
        return v

    @field_validator("target_branch")
    @classmethod
    def validate_target_branch(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("target_branch must not be empty")
        return v.strip()

    @property
    def poll_interval_seconds(self) -> float:
        return parse_duration(self.poll_interval).total_seconds()


class BeadsConfig(BaseModel):
    """Issue tracker configuration for a rig."""

    repo: str = "local"
    prefix: str = "gt"


class RigSettings(BaseModel):
    """Per-rig behavioural configuration (settings/config.json)."""

    type: str = "rig-settings"
    version: int = CURRENT_RIG_SETTINGS_VERSION
    merge_queue: MergeQueueConfig = Field(default_factory=MergeQueueConfig)
    beads: BeadsConfig | None = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in ("rig-settings", ""):
            raise ValueError(f"expected type 'rig-settings', got '{v}'")
        return "rig-settings"

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v > CURRENT_RIG_SETTINGS_VERSION:
            raise ValueError(
                f"unsupported version {v}, max supported {CURRENT_RIG_SETTINGS_VERSION}"
            )
        return v


class RigEntry(BaseModel):
    """A single rig in the town registry."""

    git_url: str
    added_at: datetime | None = None
    beads: BeadsConfig | None = None


class RigsConfig(BaseModel):
    """Rig registry (mayor/rigs.json)."""

    version: int = CURRENT_RIGS_VERSION
    rigs: dict[str, RigEntry] = Field(default_factory=dict)


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="REFINERY_LOG_")

    level: str = Field(default="INFO", description="Log level")
    dir: str | None = Field(default=None, description="Directory for JSONL logs")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()


class RefinerySettings(BaseSettings):
    """Process settings for a refinery instance."""

    model_config = SettingsConfigDict(
        env_prefix="REFINERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    town_root: Path = Field(default=Path("."), description="Root of the town workspace")
    session_id: str = Field(default="refinery", description="Session part of the owner id")
    remote: str = Field(default=DEFAULT_REMOTE, description="Git remote to integrate into")
    worker_prefixes: list[str] = Field(
        default_factory=lambda: [BRANCH_POLECAT_PREFIX, BRANCH_CREW_PREFIX],
        description="Branch prefixes that mark worker branches",
    )

    lock_ttl_seconds: float = Field(default=300.0, gt=0)
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    dead_owner_grace_seconds: float = Field(default=5.0, ge=0)
    checkpoint_stale_seconds: float = Field(default=3600.0, gt=0)

    fetch_timeout_seconds: float = Field(default=120.0, gt=0)
    rebase_timeout_seconds: float = Field(default=300.0, gt=0)
    test_timeout_seconds: float = Field(default=1800.0, gt=0)
    push_timeout_seconds: float = Field(default=120.0, gt=0)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("worker_prefixes")
    @classmethod
    def validate_worker_prefixes(cls, v: list[str]) -> list[str]:
        prefixes = [p.strip() for p in v if p.strip()]
        if not prefixes:
            raise ValueError("at least one worker branch prefix is required")
        return prefixes

    @property
    def checkpoint_stale_after(self) -> timedelta:
        return timedelta(seconds=self.checkpoint_stale_seconds)

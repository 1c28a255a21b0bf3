"""
Checkpoint store for the merge queue.

Persists one resumable snapshot per rig queue. Writes go through a temp file
and ``os.replace`` so a crash mid-write leaves the previous checkpoint intact.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from loguru import logger

from .errors import CheckpointCorruptError, CheckpointWriteError
from .models import CHECKPOINT_SCHEMA_VERSION, Checkpoint
from .utils.atomic import atomic_write_json, read_json_file
from .utils.timeutil import utcnow


class CheckpointStore:
    """Durable, atomically replaced checkpoint file."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow):
        self.path = Path(path)
        self._clock = clock

    def write(self, checkpoint: Checkpoint) -> Checkpoint:
        """Persist ``checkpoint`` with a fresh ``updated_at``."""
        stamped = checkpoint.model_copy(update={"updated_at": self._clock()})
        try:
            atomic_write_json(self.path, stamped.model_dump(mode="json"))
        except OSError as e:
            raise CheckpointWriteError(f"Cannot write checkpoint {self.path}: {e}") from e
        return stamped

    def read(self) -> Checkpoint | None:
        """
        Return the last fully written checkpoint, or None.

        A corrupt checkpoint is reported and treated as not found.
        """
        try:
            return self._parse()
        except FileNotFoundError:
            return None
        except CheckpointCorruptError as e:
            logger.error(f"Ignoring corrupt checkpoint: {e}")
            return None

    def _parse(self) -> Checkpoint:
        try:
            data = read_json_file(self.path)
        except ValueError as e:
            raise CheckpointCorruptError(f"{self.path}: {e}") from e

        try:
            checkpoint = Checkpoint.model_validate(data)
        except ValueError as e:
            raise CheckpointCorruptError(f"{self.path}: {e}") from e

        if checkpoint.schema_version != CHECKPOINT_SCHEMA_VERSION:
            raise CheckpointCorruptError(
                f"{self.path}: unsupported schema version {checkpoint.schema_version}"
            )
        return checkpoint

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise CheckpointWriteError(f"Cannot remove checkpoint {self.path}: {e}") from e

    def is_stale(self, checkpoint: Checkpoint, threshold: timedelta) -> bool:
        """True if the checkpoint has not been updated within ``threshold``."""
        return self._clock() - checkpoint.updated_at > threshold

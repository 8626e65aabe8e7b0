"""
Group Threshold Store

Per-group trust floors kept in a JSON file.

Written with write-and-rename so a crash mid-write never leaves a
truncated map behind. Groups without an entry use the default threshold.
"""

import json
import os
import threading
from pathlib import Path

from ..common.exceptions import StorageError
from ..common.logging_setup import get_service_logger

logger = get_service_logger("gateway.thresholds")


class ThresholdStore:
    """
    File-backed map of group_id -> integer trust floor.

    The in-memory map is the source of truth while running; every change
    is persisted immediately.
    """

    def __init__(self, path: str | Path, default_threshold: int = 60):
        self.path = Path(path)
        self.default_threshold = int(default_threshold)
        self._thresholds: dict[str, int] = {}
        self._lock = threading.Lock()

        self.load()

    def load(self) -> None:
        """Load thresholds from disk (missing or corrupt file = empty map)."""
        if not self.path.exists():
            self._thresholds = {}
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f) or {}
            self._thresholds = {str(k): int(v) for k, v in data.items()}
            logger.info(f"Loaded {len(self._thresholds)} group thresholds from {self.path}")
        except (OSError, json.JSONDecodeError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Threshold load failed, using defaults: {e}")
            self._thresholds = {}

    def _save(self) -> None:
        """
        Persist the map (caller holds the lock).

        Raises:
            StorageError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(self._thresholds, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.path)
        except OSError as e:
            raise StorageError(str(e), operation="save_thresholds") from e

    def get(self, group_id: str) -> int:
        """Threshold for a group, falling back to the default."""
        return self._thresholds.get(group_id, self.default_threshold)

    def set(self, group_id: str, threshold: int) -> None:
        """
        Set and persist a group threshold.

        Raises:
            StorageError: If persisting fails (the in-memory value is kept)
        """
        with self._lock:
            self._thresholds[group_id] = int(threshold)
            self._save()
        logger.info(
            f"Threshold for {group_id} set to {threshold}",
            extra={"group_id": group_id, "threshold": threshold},
        )

    def snapshot(self) -> dict[str, int]:
        """Copy of the full map."""
        return dict(self._thresholds)

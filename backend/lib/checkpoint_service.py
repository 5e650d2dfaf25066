"""
=============================================================================
CHECKPOINT SERVICE - Local recovery markers
=============================================================================

A small JSON file next to the process, holding:

    "active_since:<device_id>" -> ISO instant the device was last seen "on"
    "last_sync:<user_id>"      -> ISO instant of the last gap-fill pass

It is deliberately local: if the process is killed while a device is on,
the next start can still see when that device went active even though the
remote ledger never heard about it.

Example file:
{
    "active_since:a1b2c3": "2025-11-01T18:02:11.532000+02:00",
    "last_sync:user-001": "2025-11-01T18:00:00+02:00"
}
=============================================================================
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional

from backend.lib.uptime_core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class FileCheckpointStore:
    """Synchronous key/value store persisted to one JSON file."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._values: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # A torn or corrupt file only costs recovery precision, not data
            logger.warning("Ignoring unreadable checkpoint file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring checkpoint file %s: not a JSON object", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        # Write to a temp file and swap, so a crash never leaves half a file
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(self._values, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write checkpoint file {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._values.pop(key, None) is not None:
                self._flush()

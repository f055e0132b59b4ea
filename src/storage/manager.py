"""
Key/value store persisted to a single JSON file
Host-side equivalent of the charger monitor's NVS namespace storage
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class StorageUnavailableError(Exception):
    """Raised when the backing file cannot be read or written"""


class KeyValueStore:
    """Namespaced string key/value store backed by a JSON file"""

    def __init__(self, config: Dict):
        self.path = Path(config['storage']['path'])
        self._data: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()
        self.available = False

    def initialize(self) -> bool:
        """Load the backing file; a missing file is an empty store"""
        with self._lock:
            try:
                if self.path.exists():
                    with open(self.path, 'r', encoding='utf-8') as f:
                        loaded = json.load(f)
                    if not isinstance(loaded, dict):
                        raise ValueError(f"expected a JSON object, got {type(loaded).__name__}")
                    self._data = {
                        str(ns): {str(k): str(v) for k, v in values.items()}
                        for ns, values in loaded.items()
                        if isinstance(values, dict)
                    }
                    logger.info(f"[STORE] Loaded {len(self._data)} namespace(s) from {self.path}")
                else:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    self._data = {}
                    logger.info(f"[STORE] No state file at {self.path} - starting empty")
                self.available = True
            except (OSError, ValueError) as e:
                logger.error(f"[STORE] State file unavailable ({self.path}): {e}")
                self._data = {}
                self.available = False
        return self.available

    def get(self, namespace: str, key: str) -> Optional[str]:
        if not self.available:
            raise StorageUnavailableError(f"store at {self.path} is not available")
        with self._lock:
            return self._data.get(namespace, {}).get(key)

    def set(self, namespace: str, key: str, value: str) -> None:
        if not self.available:
            raise StorageUnavailableError(f"store at {self.path} is not available")
        with self._lock:
            previous = dict(self._data.get(namespace, {}))
            self._data.setdefault(namespace, {})[key] = value
            try:
                self._commit()
            except OSError as e:
                self._data[namespace] = previous
                raise StorageUnavailableError(f"failed to write {self.path}: {e}") from e

    def delete(self, namespace: str, key: str) -> bool:
        if not self.available:
            raise StorageUnavailableError(f"store at {self.path} is not available")
        with self._lock:
            values = self._data.get(namespace, {})
            if key not in values:
                return False
            del values[key]
            try:
                self._commit()
            except OSError as e:
                raise StorageUnavailableError(f"failed to write {self.path}: {e}") from e
            return True

    def _commit(self) -> None:
        # Write-then-rename so a crash never leaves a half-written file
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def close(self) -> None:
        with self._lock:
            self.available = False
        logger.info("[STORE] Closed")

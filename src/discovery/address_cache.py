"""
Last-known-good charger address, persisted in the key/value store
"""

import ipaddress
import logging
from typing import Dict, Optional

from storage import KeyValueStore, StorageUnavailableError
from .models import CachedAddress

logger = logging.getLogger(__name__)

ADDRESS_KEY = "saved_ip"

class AddressCache:
    """Single-slot address cache; never raises to callers"""

    def __init__(self, store: Optional[KeyValueStore], config: Dict):
        self.store = store
        self.namespace = config['storage'].get('namespace', 'ip_scanner')

    def load(self) -> CachedAddress:
        if self.store is None:
            return CachedAddress(None, False)
        try:
            value = self.store.get(self.namespace, ADDRESS_KEY)
        except StorageUnavailableError as e:
            logger.warning(f"[CACHE] Cannot load cached address: {e}")
            return CachedAddress(None, False)

        if not value:
            logger.debug("[CACHE] No cached charger address")
            return CachedAddress(None, False)

        try:
            address = str(ipaddress.IPv4Address(value.strip()))
        except ValueError:
            logger.warning(f"[CACHE] Ignoring invalid cached address: {value!r}")
            return CachedAddress(None, False)

        logger.debug(f"[CACHE] Loaded cached charger address: {address}")
        return CachedAddress(address, True)

    def save(self, address: str) -> None:
        if self.store is None:
            logger.warning(f"[CACHE] No store configured - not saving {address}")
            return
        try:
            self.store.set(self.namespace, ADDRESS_KEY, address)
            logger.info(f"[CACHE] Saved charger address: {address}")
        except StorageUnavailableError as e:
            logger.error(f"[CACHE] Failed to save charger address {address}: {e}")

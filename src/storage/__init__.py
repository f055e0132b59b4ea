"""
Storage module for persisted monitor state
"""

from .manager import KeyValueStore, StorageUnavailableError

__all__ = ['KeyValueStore', 'StorageUnavailableError']

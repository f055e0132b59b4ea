"""
Discovery module for locating the ionbridge charger on the LAN
"""

from .address_cache import AddressCache
from .manager import Scanner, partition_hosts
from .models import CachedAddress, ProbeStatus, ScanOutcome, ScanRange, ScanResult
from .network_info import NetworkStatus, extract_network_prefix, normalize_prefix
from .prober import Prober

__all__ = [
    'AddressCache', 'Scanner', 'partition_hosts', 'CachedAddress', 'ProbeStatus',
    'ScanOutcome', 'ScanRange', 'ScanResult', 'NetworkStatus', 'extract_network_prefix',
    'normalize_prefix', 'Prober'
]

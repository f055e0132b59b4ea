"""
Host network state: whether the LAN is up and which /24 to scan
"""

import ipaddress
import logging
import socket
from typing import Dict, Optional

logger = logging.getLogger(__name__)

def resolve_local_ipv4() -> Optional[str]:
    """Return the primary local IPv4 used for outbound LAN traffic"""
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only selects the outbound interface
        probe.connect(("8.8.8.8", 80))
        return probe.getsockname()[0]
    except OSError:
        return None
    finally:
        probe.close()

def extract_network_prefix(ip: Optional[str]) -> Optional[str]:
    """
    Extract the /24 scan prefix from an address
    e.g. "192.168.1.100" -> "192.168.1."
    """
    if not ip:
        return None
    try:
        address = ipaddress.IPv4Address(ip.strip())
    except ValueError:
        logger.error(f"Invalid IPv4 address: {ip}")
        return None

    octets = str(address).split('.')
    return '.'.join(octets[:3]) + '.'

def normalize_prefix(prefix: Optional[str]) -> str:
    """
    Validate a three-octet scan prefix and return it with a trailing dot
    Raises ValueError on empty or malformed prefixes
    """
    if prefix is None or not str(prefix).strip():
        raise ValueError("subnet prefix must not be empty")

    value = str(prefix).strip()
    if not value.endswith('.'):
        value += '.'

    octets = value[:-1].split('.')
    if len(octets) != 3:
        raise ValueError(f"subnet prefix must have three octets: {prefix!r}")
    try:
        ipaddress.IPv4Address(value + '0')
    except ValueError as e:
        raise ValueError(f"invalid subnet prefix {prefix!r}: {e}") from e
    return value


class NetworkStatus:
    """Network-up signal and host address, with optional config overrides"""

    def __init__(self, config: Dict):
        network = config['network']
        self.local_address_override = network.get('local_address')
        self.subnet_prefix_override = network.get('subnet_prefix')

    def local_address(self) -> Optional[str]:
        if self.local_address_override:
            return self.local_address_override
        return resolve_local_ipv4()

    def is_up(self) -> bool:
        address = self.local_address()
        if not address:
            return False
        try:
            parsed = ipaddress.IPv4Address(address)
        except ValueError:
            return False
        return not (parsed.is_loopback or parsed.is_unspecified or parsed.is_link_local)

    def subnet_prefix(self) -> Optional[str]:
        if self.subnet_prefix_override:
            try:
                return normalize_prefix(self.subnet_prefix_override)
            except ValueError as e:
                logger.error(f"Ignoring configured subnet_prefix: {e}")
        return extract_network_prefix(self.local_address())

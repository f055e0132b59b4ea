"""
Discovery data structures and models
"""

from enum import Enum
from typing import List, NamedTuple, Optional
from dataclasses import dataclass, field

HOST_FIRST = 1
HOST_LAST = 254

class CachedAddress(NamedTuple):
    """The single persisted charger address slot; unpacks as (address, found)"""
    value: Optional[str]
    present: bool

@dataclass(frozen=True)
class ScanRange:
    """Contiguous slice of the last IPv4 octet handled by one scan worker"""
    start_host: int
    end_host: int

    def __len__(self) -> int:
        return max(0, self.end_host - self.start_host + 1)

@dataclass(frozen=True)
class ScanOutcome:
    """Result of probing one address"""
    address: str
    matched: bool

class ProbeStatus(Enum):
    MATCHED = "matched"
    TIMEOUT = "timeout"
    REFUSED = "refused"
    UNREACHABLE = "unreachable"
    NO_SIGNATURE = "no_signature"

@dataclass
class ScanResult:
    """Results from one subnet scan"""
    prefix: str
    address: Optional[str] = None       # accepted (persisted) match
    matches: List[str] = field(default_factory=list)
    hosts_probed: int = 0
    duration_seconds: float = 0.0

    @property
    def found(self) -> bool:
        return self.address is not None

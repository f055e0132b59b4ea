"""
Telemetry data structures: per-port readings and the published power model
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence, Tuple

DEFAULT_PORT_NAMES = ('A', 'C1', 'C2', 'C3', 'C4')

@dataclass(frozen=True)
class PortReading:
    """One power-delivery port"""
    id: int
    name: str
    state: int = 0
    protocol: int = 0
    current_ma: int = 0
    voltage_mv: int = 0

    @property
    def power_watts(self) -> float:
        return compute_power_watts(self.current_ma, self.voltage_mv)

@dataclass(frozen=True)
class PowerModel:
    """Immutable snapshot of all ports; replaced as a whole on every poll"""
    ports: Tuple[PortReading, ...]
    data_valid: bool = False
    updated_at: Optional[datetime] = None

    @classmethod
    def empty(cls, port_count: int = 5, port_names: Optional[Sequence[str]] = None) -> 'PowerModel':
        names = list(port_names) if port_names is not None else list(DEFAULT_PORT_NAMES)
        ports = tuple(
            PortReading(id=i, name=names[i] if i < len(names) else f"P{i}")
            for i in range(port_count)
        )
        return cls(ports=ports)

    @property
    def total_watts(self) -> float:
        return sum(port.power_watts for port in self.ports)

    def with_validity(self, data_valid: bool) -> 'PowerModel':
        return replace(self, data_valid=data_valid)

    def summary(self) -> str:
        parts = [
            f"{p.name}={p.power_watts:.2f}W({p.current_ma}mA,{p.voltage_mv}mV)"
            for p in self.ports
        ]
        parts.append(f"Total={self.total_watts:.2f}W")
        return ", ".join(parts)

def compute_power_watts(current_ma: int, voltage_mv: int) -> float:
    return current_ma * voltage_mv / 1_000_000


class VoltageBand(Enum):
    """Display colour band for a port's negotiated voltage"""
    WHITE = "white"      # 0-6 V
    GREEN = "green"      # 6-10 V
    YELLOW = "yellow"    # 10-13 V
    ORANGE = "orange"    # 13-16 V
    RED = "red"          # 16-21 V
    PURPLE = "purple"    # above 21 V
    GRAY = "gray"        # unrecognized

def classify_voltage(voltage_mv: int) -> VoltageBand:
    if voltage_mv > 21000:
        return VoltageBand.PURPLE
    if voltage_mv > 16000:
        return VoltageBand.RED
    if voltage_mv > 13000:
        return VoltageBand.ORANGE
    if voltage_mv > 10000:
        return VoltageBand.YELLOW
    if voltage_mv > 6000:
        return VoltageBand.GREEN
    if voltage_mv >= 0:
        return VoltageBand.WHITE
    return VoltageBand.GRAY

def load_percent(watts: float, max_watts: float) -> int:
    """Percentage of capacity; any non-zero draw shows at least 1%"""
    if max_watts <= 0:
        return 0
    percent = int(watts / max_watts * 100)
    if watts > 0 and percent == 0:
        percent = 1
    return percent


@dataclass(frozen=True)
class MetricSample:
    """One (port, field, value) triple read from the feed"""
    port_id: int
    field: str
    value: int


@dataclass
class PollStats:
    """Counters for the health endpoint"""
    total_polls: int = 0
    successful_polls: int = 0
    failed_polls: int = 0
    session_resets: int = 0
    discoveries: int = 0
    last_error: Optional[str] = None
    last_success: Optional[datetime] = None

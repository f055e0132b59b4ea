"""
Telemetry module: feed parsing, power model and polling
"""

from .metrics_parser import METRIC_FIELDS, fold_samples, parse_line, parse_metrics
from .models import (
    MetricSample, PollStats, PortReading, PowerModel, VoltageBand,
    classify_voltage, compute_power_watts, load_percent
)
from .poller import FetchStatus, PollerState, TelemetryPoller

__all__ = [
    'METRIC_FIELDS', 'fold_samples', 'parse_line', 'parse_metrics', 'MetricSample',
    'PollStats', 'PortReading', 'PowerModel', 'VoltageBand', 'classify_voltage',
    'compute_power_watts', 'load_percent', 'FetchStatus', 'PollerState', 'TelemetryPoller'
]

"""
Parser for the charger's exposition-format feed

Lines look like::

    ionbridge_port_current{id="0"} 1500
    ionbridge_port_voltage{id="0"} 5000

Anything that does not match one of the known metric names, or does not have
the quote/brace structure, is skipped. A garbled payload still yields every
valid line it contains.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import MetricSample, PowerModel

logger = logging.getLogger(__name__)

# metric name -> PortReading attribute
METRIC_FIELDS = {
    'ionbridge_port_current': 'current_ma',
    'ionbridge_port_voltage': 'voltage_mv',
    'ionbridge_port_state': 'state',
    'ionbridge_port_fc_protocol': 'protocol',
}

def parse_metrics(payload: Optional[str], port_count: int = 5) -> List[MetricSample]:
    """Return every valid sample in the payload, in payload order"""
    if not payload:
        return []

    samples = []
    for raw_line in payload.split('\n'):
        sample = parse_line(raw_line.strip(), port_count)
        if sample is not None:
            samples.append(sample)
    return samples

def parse_line(line: str, port_count: int = 5) -> Optional[MetricSample]:
    """Tokenize one line; None means skip"""
    if not line or line.startswith('#'):
        return None

    name, brace, rest = line.partition('{')
    if not brace:
        return None
    field = METRIC_FIELDS.get(name.strip())
    if field is None:
        return None

    # id is the text between the first two quotes after the metric name
    quoted = rest.split('"', 2)
    if len(quoted) < 3:
        return None
    try:
        port_id = int(quoted[1].strip())
    except ValueError:
        return None

    _, closing, value_text = quoted[2].partition('}')
    if not closing:
        return None
    tokens = value_text.split()
    if not tokens:
        return None

    value = _parse_value(tokens[0])
    if value is None:
        return None

    if not 0 <= port_id < port_count:
        return None

    return MetricSample(port_id=port_id, field=field, value=value)

def _parse_value(token: str) -> Optional[int]:
    try:
        return int(token)
    except ValueError:
        pass
    try:
        # Floats are truncated toward zero
        return int(float(token))
    except (ValueError, OverflowError):
        return None

def fold_samples(model: PowerModel, samples: Iterable[MetricSample],
                 data_valid: bool = True) -> PowerModel:
    """
    Merge samples into a new PowerModel
    Ports and fields not mentioned keep their previous values
    """
    updates: Dict[int, Dict[str, int]] = {}
    for sample in samples:
        updates.setdefault(sample.port_id, {})[sample.field] = sample.value

    ports = tuple(
        replace(port, **updates[port.id]) if port.id in updates else port
        for port in model.ports
    )
    return PowerModel(
        ports=ports,
        data_valid=data_valid,
        updated_at=datetime.now(timezone.utc)
    )

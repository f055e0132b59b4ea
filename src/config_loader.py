"""
Configuration loader for the Ionbridge Power Monitor
Loads and validates configuration from YAML files
"""

import yaml
import logging
from typing import Dict, Any
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_SECONDS = 0.5

def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        # Validate required sections
        _validate_config(config)

        # Apply defaults
        config = _apply_defaults(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise

def _validate_config(config: Dict) -> None:
    """Validate that required configuration sections exist"""
    required_sections = ['network', 'polling']

    for section in required_sections:
        if section not in config or config[section] is None:
            raise ValueError(f"Missing required configuration section: {section}")

    # Validate network section
    network = config['network']
    if not network.get('default_address'):
        raise ValueError("network.default_address is required and must not be empty")

    feed_path = network.get('feed_path', '/metrics')
    if not str(feed_path).startswith('/'):
        raise ValueError(f"network.feed_path must start with '/': {feed_path}")

    # Validate polling section
    polling = config['polling']
    interval = polling.get('interval_seconds')
    if interval is not None and interval <= 0:
        raise ValueError("polling.interval_seconds must be positive")

    # Validate device section if present
    device = config.get('device') or {}
    port_count = device.get('port_count', 5)
    if not isinstance(port_count, int) or port_count <= 0:
        raise ValueError(f"device.port_count must be a positive integer: {port_count}")

    # Validate discovery section if present
    discovery = config.get('discovery') or {}
    workers = discovery.get('workers', 3)
    if not isinstance(workers, int) or not 1 <= workers <= 254:
        raise ValueError(f"discovery.workers must be between 1 and 254: {workers}")

def _apply_section_defaults(config: Dict, section: str, defaults: Dict) -> None:
    if config.get(section) is None:
        config[section] = {}
    for key, default_value in defaults.items():
        if key not in config[section]:
            config[section][key] = default_value

def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""

    # Device defaults
    _apply_section_defaults(config, 'device', {
        'port_count': 5,
        'port_names': ['A', 'C1', 'C2', 'C3', 'C4'],
        'max_total_watts': 160,
        'max_port_watts': 140
    })

    # Network defaults
    _apply_section_defaults(config, 'network', {
        'feed_port': 80,
        'feed_path': '/metrics',
        'match_signature': 'ionbridge_port_current',
        'subnet_prefix': None,
        'local_address': None
    })

    # Discovery defaults
    _apply_section_defaults(config, 'discovery', {
        'workers': 3,
        'connect_timeout': 0.5,
        'read_timeout': 1.0,
        'max_response_bytes': 2048,
        'probe_attempts': 1,
        'probe_pause': 0.005,
        'worker_stagger': 0.05,
        'validate_cached': True
    })

    # Polling defaults
    _apply_section_defaults(config, 'polling', {
        'interval_seconds': MIN_POLL_INTERVAL_SECONDS,
        'request_timeout': 1.0,
        'connect_reset_threshold': 5,
        'rediscover_threshold': 20,
        'network_check_interval': 1.0
    })
    if config['polling']['interval_seconds'] < MIN_POLL_INTERVAL_SECONDS:
        logger.warning(
            f"polling.interval_seconds={config['polling']['interval_seconds']} is below the "
            f"{MIN_POLL_INTERVAL_SECONDS}s floor - clamping"
        )
        config['polling']['interval_seconds'] = MIN_POLL_INTERVAL_SECONDS

    # Storage defaults
    _apply_section_defaults(config, 'storage', {
        'path': 'data/state.json',
        'namespace': 'ip_scanner'
    })

    # API defaults
    _apply_section_defaults(config, 'api', {
        'enabled': True,
        'host': '0.0.0.0',
        'port': 8000
    })

    # Monitoring defaults
    _apply_section_defaults(config, 'monitoring', {
        'health_check_interval_minutes': 5
    })

    # Logging defaults
    _apply_section_defaults(config, 'logging', {
        'level': 'INFO',
        'file': 'logs/power_monitor.log',
        'console_output': True,
        'timezone': 'UTC'
    })

    return config


class TimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone"""

    def __init__(self, fmt=None, tz_name: str = 'UTC'):
        super().__init__(fmt)
        try:
            self.tz = pytz.timezone(tz_name)
        except pytz.UnknownTimeZoneError:
            self.tz = pytz.utc

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            # Default format: YYYY-MM-DD HH:MM:SS TZ
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')

def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration with timezone-aware timestamps"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')
    tz_name = log_config.get('timezone', 'UTC')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, tz_name)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[]
    )
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    # Console handler
    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    # File handler
    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logger.info(f"Logging configured: level={level}, tz={tz_name}, console={log_config.get('console_output', True)}, file={log_file}")

def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "device": {
            "port_count": 5,
            "port_names": ["A", "C1", "C2", "C3", "C4"],
            "max_total_watts": 160,
            "max_port_watts": 140
        },
        "network": {
            "default_address": "192.168.1.19",
            "feed_port": 80,
            "feed_path": "/metrics",
            "match_signature": "ionbridge_port_current",
            "subnet_prefix": None,      # derived from the host address when unset
            "local_address": None
        },
        "discovery": {
            "workers": 3,
            "connect_timeout": 0.5,
            "read_timeout": 1.0,
            "max_response_bytes": 2048,
            "probe_attempts": 1,
            "probe_pause": 0.005,
            "worker_stagger": 0.05,
            "validate_cached": True
        },
        "polling": {
            "interval_seconds": 0.5,
            "request_timeout": 1.0,
            "connect_reset_threshold": 5,
            "rediscover_threshold": 20,
            "network_check_interval": 1.0
        },
        "storage": {
            "path": "data/state.json",
            "namespace": "ip_scanner"
        },
        "api": {
            "enabled": True,
            "host": "0.0.0.0",
            "port": 8000
        },
        "monitoring": {
            "health_check_interval_minutes": 5
        },
        "logging": {
            "level": "INFO",
            "file": "logs/power_monitor.log",
            "console_output": True,
            "timezone": "UTC"
        }
    }

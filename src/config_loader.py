"""
Configuration loader for the Edge Proxy
Loads and validates configuration from YAML files
"""

import copy
import ipaddress
import yaml
import logging
from typing import Dict, Any
from pathlib import Path
from datetime import datetime
import pytz

from log_buffer import RecentLogHandler

logger = logging.getLogger(__name__)

DEFAULTS = {
    'proxy': {
        'host': '0.0.0.0',
        'port': 8080,
        'edge_port': 8080,
        'connect_timeout_seconds': 5,
        'read_timeout_seconds': 30,
        'upload_dir': 'tmp/uploads'
    },
    'discovery': {
        'enabled': True,
        'service_type': '_proxy-edge._tcp.local.',
        'resolve_timeout_seconds': 3,
        'request_timeout': 3,
        'refresh_interval_seconds': 60
    },
    'network': {
        'enable_subnet_scan': True,
        'scan_interval_seconds': 600,
        'refresh_interval_seconds': 120,
        'request_timeout': 3,
        'max_concurrent_probes': 254,
        'local_ip': None
    },
    'registry': {
        'stale_sweep_enabled': True,
        'stale_sweep_interval_seconds': 60,
        'max_age_seconds': 360
    },
    'decision_log': {
        'enabled': True,
        'file': 'logs/proxy_decisions.csv'
    },
    'api': {
        'expose_system_routes': True
    },
    'logging': {
        'level': 'INFO',
        'file': 'logs/edge_proxy.log',
        'console_output': True,
        'timezone': 'UTC',
        'buffer_size': 100
    }
}

POSITIVE_NUMBERS = {
    'proxy': ['connect_timeout_seconds', 'read_timeout_seconds'],
    'discovery': ['resolve_timeout_seconds', 'request_timeout', 'refresh_interval_seconds'],
    'network': ['scan_interval_seconds', 'refresh_interval_seconds', 'request_timeout', 'max_concurrent_probes'],
    'registry': ['stale_sweep_interval_seconds', 'max_age_seconds'],
    'logging': ['buffer_size']
}

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

        config = normalize_config(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise

def normalize_config(config: Dict) -> Dict:
    """Validate a raw configuration mapping and fill in defaults"""
    if not isinstance(config, dict):
        raise ValueError("Configuration root must be a mapping")

    config = _apply_defaults(copy.deepcopy(config))
    _validate_config(config)
    return config

def _validate_config(config: Dict) -> None:
    """Validate section types, ports, timeouts and the local IP override"""
    for section in DEFAULTS:
        if not isinstance(config.get(section), dict):
            raise ValueError(f"Configuration section '{section}' must be a mapping")

    proxy = config['proxy']
    for field in ['port', 'edge_port']:
        value = proxy[field]
        if not isinstance(value, int) or not 1 <= value <= 65535:
            raise ValueError(f"proxy.{field} must be a port number between 1 and 65535, got {value!r}")

    for section, fields in POSITIVE_NUMBERS.items():
        for field in fields:
            value = config[section][field]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"{section}.{field} must be a positive number, got {value!r}")

    local_ip = config['network'].get('local_ip')
    if local_ip:
        try:
            ipaddress.IPv4Address(local_ip)
        except ValueError:
            raise ValueError(f"network.local_ip must be an IPv4 address, got {local_ip!r}")

    level = str(config['logging']['level']).upper()
    if not isinstance(getattr(logging, level, None), int):
        raise ValueError(f"logging.level '{config['logging']['level']}' is not a valid log level")

    try:
        pytz.timezone(config['logging']['timezone'])
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"logging.timezone '{config['logging']['timezone']}' is not a known timezone")

def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""
    for section, defaults in DEFAULTS.items():
        if config.get(section) is None:
            config[section] = {}
        if not isinstance(config[section], dict):
            continue
        for key, default_value in defaults.items():
            if key not in config[section]:
                config[section][key] = default_value

    return config


class TimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone"""

    def __init__(self, fmt=None, timezone: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(timezone)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            # Default format: YYYY-MM-DD HH:MM:SS TZ
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')

def setup_logging(config: Dict) -> RecentLogHandler:
    """Setup logging based on configuration; returns the recent-log buffer handler"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')
    timezone = log_config.get('timezone', 'UTC')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, timezone)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Replace handlers from a previous call instead of stacking them
    for handler in list(root_logger.handlers):
        if getattr(handler, '_edge_proxy_handler', False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers = []

    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    buffer_handler = RecentLogHandler(log_config.get('buffer_size', 100))
    handlers.append(buffer_handler)

    for handler in handlers:
        handler._edge_proxy_handler = True
        root_logger.addHandler(handler)

    logger.info(f"Logging configured: level={level}, timezone={timezone}, console={log_config.get('console_output', True)}, file={log_file}")
    return buffer_handler

def get_sample_config() -> Dict:
    """Return a sample configuration for reference: a fresh copy of the defaults"""
    return copy.deepcopy(DEFAULTS)

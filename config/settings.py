"""
Configuration settings for the Hyperliquid WebSocket client.

Handles loading configuration from files and environment variables.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
import structlog

from hyperliquid_ws.manager import MAINNET_WS_URL, TESTNET_WS_URL, WebSocketConfig

logger = structlog.get_logger(__name__)

# Default configuration file path
DEFAULT_CONFIG_PATH = os.path.join(Path(__file__).parent, "config.json")

NETWORK_URLS = {
    'mainnet': MAINNET_WS_URL,
    'testnet': TESTNET_WS_URL
}

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    'HL_WS_URL': ('websocket', 'url', str),
    'HL_WS_NETWORK': ('websocket', 'network', str),
    'HL_WS_PING_INTERVAL': ('websocket', 'ping_interval', float),
    'HL_WS_PONG_TIMEOUT': ('websocket', 'pong_timeout', float),
    'HL_WS_DIAL_TIMEOUT': ('websocket', 'dial_timeout', float),
    'HL_WS_RECONNECT_DELAY': ('websocket', 'reconnect_delay', float),
    'HL_WS_MAX_RECONNECT_ATTEMPTS': ('websocket', 'max_reconnect_attempts', int),
    'HL_WS_QUEUE_SIZE': ('websocket', 'dispatch_queue_size', int),
    'LOG_LEVEL': ('logging', 'level', str),
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file and environment variables.

    Precedence: defaults, then the JSON file, then environment variables.

    Args:
        config_path: Path to configuration file (default: config/config.json)

    Returns:
        Dictionary with configuration settings

    Raises:
        ValueError: If an environment variable cannot be parsed
    """
    config_path = config_path or DEFAULT_CONFIG_PATH

    # Default configuration
    config = {
        'websocket': {
            'network': 'mainnet',
            'url': None,
            'ping_interval': 30.0,
            'pong_timeout': 10.0,
            'dial_timeout': 10.0,
            'reconnect_delay': 5.0,
            'max_reconnect_attempts': 10,
            'reconnect_jitter': False,
            'dispatch_queue_size': 1000
        },
        'subscriber_queue_size': 100,
        'logging': {
            'level': 'INFO',
            'json': False
        }
    }

    # Load configuration from file if exists
    try:
        if os.path.exists(config_path):
            with open(config_path, 'r') as f:
                file_config = json.load(f)

                # Update config with file values
                _deep_update(config, file_config)

            logger.info("Loaded configuration", path=config_path)
        else:
            logger.debug("Configuration file not found, using defaults", path=config_path)

    except (OSError, json.JSONDecodeError) as e:
        logger.error("Error loading configuration file", path=config_path, error=str(e))

    _apply_env(config)

    return config


def _apply_env(config: Dict[str, Any]) -> None:
    for name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.environ.get(name)
        if raw is None or raw == '':
            continue
        try:
            value = cast(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from e
        config.setdefault(section, {})[key] = value


def resolve_url(ws_config: Dict[str, Any]) -> str:
    """
    Endpoint URL for a websocket section: an explicit url wins over network.

    Raises:
        ValueError: For an unknown network name
    """
    if ws_config.get('url'):
        return ws_config['url']

    network = str(ws_config.get('network') or 'mainnet').lower()
    if network not in NETWORK_URLS:
        raise ValueError(f"Unknown network: {network} (expected mainnet or testnet)")
    return NETWORK_URLS[network]


def build_websocket_config(config: Dict[str, Any]) -> WebSocketConfig:
    """
    Materialise the websocket section into a WebSocketConfig.

    Raises:
        ValueError: For non-positive intervals or sizes
    """
    section = dict(config.get('websocket', {}))
    section.pop('url', None)
    section.pop('network', None)

    fields = WebSocketConfig.__dataclass_fields__
    unknown = [key for key in section if key not in fields]
    for key in unknown:
        logger.warning("Ignoring unknown websocket setting", setting=key)
        section.pop(key)

    ws_config = WebSocketConfig(**section)
    if ws_config.reconnect_delay < 0:
        raise ValueError("reconnect_delay must not be negative")
    if ws_config.max_reconnect_attempts <= 0:
        raise ValueError("max_reconnect_attempts must be positive")
    return ws_config


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep update target dictionary with values from source.

    Args:
        target: Target dictionary to update
        source: Source dictionary with values

    Returns:
        Updated target dictionary
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _deep_update(target[key], value)
        else:
            target[key] = value

    return target

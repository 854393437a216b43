"""
Configuration loading for the Hyperliquid WebSocket client.
"""

from .settings import load_config, build_websocket_config, resolve_url

__all__ = ['load_config', 'build_websocket_config', 'resolve_url']

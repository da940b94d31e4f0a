"""
Configuration management for solxen-bridge.

Loads and validates settings from environment variables and an optional .env
file. Exposes a single source of truth for all pipeline configuration.
"""

from solxen_bridge.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]

"""Configuration management for the aggregation system."""

from .config import (
    SystemConfig,
    CipherConfig,
    RoomConfig,
    GroupConfig,
    AuthConfig,
    load_config,
    save_config
)

__all__ = ['SystemConfig', 'CipherConfig', 'RoomConfig', 'GroupConfig', 'AuthConfig',
           'load_config', 'save_config']

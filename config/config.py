import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")


@dataclass
class CipherConfig:
    min_modulus_bits: int = 512


@dataclass
class RoomConfig:
    voting_period_hours: float = 24.0

    def __post_init__(self):
        if self.voting_period_hours <= 0:
            raise ValueError("voting_period_hours must be positive")


@dataclass
class GroupConfig:
    # Publish an encrypted average instead of (sum, count)
    publish_average: bool = False


@dataclass
class AuthConfig:
    max_clock_skew_seconds: float = 300.0


@dataclass
class SystemConfig:
    cipher_config: CipherConfig = field(default_factory=CipherConfig)
    room_config: RoomConfig = field(default_factory=RoomConfig)
    group_config: GroupConfig = field(default_factory=GroupConfig)
    auth_config: AuthConfig = field(default_factory=AuthConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_performance_monitoring: bool = True
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.enable_debug_mode else "INFO"


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        return SystemConfig()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}")
        logger.warning("Using default configuration")
        return SystemConfig()

    if not isinstance(config_data, dict):
        logger.warning(f"Ignoring config file {config_path}: expected a mapping")
        return SystemConfig()

    cipher_data = config_data.get('cipher', {})
    cipher_config = CipherConfig(
        min_modulus_bits=cipher_data.get('min_modulus_bits', 512)
    )

    room_data = config_data.get('rooms', {})
    room_config = RoomConfig(
        voting_period_hours=room_data.get('voting_period_hours', 24.0)
    )

    group_data = config_data.get('groups', {})
    group_config = GroupConfig(
        publish_average=group_data.get('publish_average', False)
    )

    auth_data = config_data.get('auth', {})
    auth_config = AuthConfig(
        max_clock_skew_seconds=auth_data.get('max_clock_skew_seconds', 300.0)
    )

    return SystemConfig(
        cipher_config=cipher_config,
        room_config=room_config,
        group_config=group_config,
        auth_config=auth_config,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        enable_performance_monitoring=config_data.get(
            'enable_performance_monitoring', True),
        enable_debug_mode=config_data.get('enable_debug_mode', False)
    )


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    config_data = {
        'cipher': {
            'min_modulus_bits': config.cipher_config.min_modulus_bits
        },
        'rooms': {
            'voting_period_hours': config.room_config.voting_period_hours
        },
        'groups': {
            'publish_average': config.group_config.publish_average
        },
        'auth': {
            'max_clock_skew_seconds': config.auth_config.max_clock_skew_seconds
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_performance_monitoring': config.enable_performance_monitoring,
        'enable_debug_mode': config.enable_debug_mode
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)

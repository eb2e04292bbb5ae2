"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv


# Protocol constants
CHUNK_SIZE = 64 * 1024  # 64KB
HIGH_WATER_MARK = 16 * 1024 * 1024  # 16MB
LOW_WATER_MARK = 4 * 1024 * 1024  # 4MB
ROOM_TTL = 600.0  # 10 minutes
SWEEP_INTERVAL = 60.0
GATHER_TIMEOUT = 2.0
CONNECT_TIMEOUT = 10.0


@dataclass
class Config:
    """
    Swyft Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (SWYFT_*)
    2. Config file (config.json)
    3. Default values
    """
    # Signaling server
    host: str = '0.0.0.0'
    port: int = 3000
    server_url: str = 'ws://localhost:3000/ws'

    # Transfer
    chunk_size: int = CHUNK_SIZE
    high_water_mark: int = HIGH_WATER_MARK
    low_water_mark: int = LOW_WATER_MARK
    verify_size: bool = False

    # Rooms
    room_ttl: float = ROOM_TTL
    sweep_interval: float = SWEEP_INTERVAL

    # Timeouts (seconds)
    gather_timeout: float = GATHER_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    answer_timeout: float = ROOM_TTL

    # Output
    output_dir: Path = field(default_factory=lambda: Path('./received'))

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Signaling server
        config.host = os.getenv('SWYFT_HOST', config.host)
        config.port = int(os.getenv('SWYFT_PORT', config.port))
        config.server_url = os.getenv('SWYFT_SERVER_URL', config.server_url)

        # Transfer
        config.chunk_size = int(os.getenv('SWYFT_CHUNK_SIZE', config.chunk_size))
        config.high_water_mark = int(
            os.getenv('SWYFT_HIGH_WATER_MARK', config.high_water_mark)
        )
        config.low_water_mark = int(
            os.getenv('SWYFT_LOW_WATER_MARK', config.low_water_mark)
        )
        config.verify_size = os.getenv('SWYFT_VERIFY_SIZE', 'false').lower() == 'true'

        # Rooms
        config.room_ttl = float(os.getenv('SWYFT_ROOM_TTL', config.room_ttl))
        config.sweep_interval = float(
            os.getenv('SWYFT_SWEEP_INTERVAL', config.sweep_interval)
        )

        # Timeouts
        config.gather_timeout = float(
            os.getenv('SWYFT_GATHER_TIMEOUT', config.gather_timeout)
        )
        config.connect_timeout = float(
            os.getenv('SWYFT_CONNECT_TIMEOUT', config.connect_timeout)
        )
        config.answer_timeout = float(
            os.getenv('SWYFT_ANSWER_TIMEOUT', config.answer_timeout)
        )

        # Output
        output_dir = os.getenv('SWYFT_OUTPUT_DIR')
        if output_dir:
            config.output_dir = Path(output_dir)

        # Logging
        config.log_level = os.getenv('SWYFT_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Signaling server
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)
        config.server_url = data.get('server_url', config.server_url)

        # Transfer
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.high_water_mark = data.get('high_water_mark', config.high_water_mark)
        config.low_water_mark = data.get('low_water_mark', config.low_water_mark)
        config.verify_size = data.get('verify_size', config.verify_size)

        # Rooms
        config.room_ttl = data.get('room_ttl', config.room_ttl)
        config.sweep_interval = data.get('sweep_interval', config.sweep_interval)

        # Timeouts
        config.gather_timeout = data.get('gather_timeout', config.gather_timeout)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)
        config.answer_timeout = data.get('answer_timeout', config.answer_timeout)

        # Output
        if 'output_dir' in data:
            config.output_dir = Path(data['output_dir'])

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'server_url': self.server_url,
            'chunk_size': self.chunk_size,
            'high_water_mark': self.high_water_mark,
            'low_water_mark': self.low_water_mark,
            'verify_size': self.verify_size,
            'room_ttl': self.room_ttl,
            'sweep_interval': self.sweep_interval,
            'gather_timeout': self.gather_timeout,
            'connect_timeout': self.connect_timeout,
            'answer_timeout': self.answer_timeout,
            'output_dir': str(self.output_dir),
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'port', 'server_url', 'chunk_size', 'high_water_mark',
                'low_water_mark', 'verify_size', 'room_ttl', 'sweep_interval',
                'gather_timeout', 'connect_timeout', 'answer_timeout', 'output_dir', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 3000,
  "server_url": "ws://localhost:3000/ws",
  "chunk_size": 65536,
  "high_water_mark": 16777216,
  "low_water_mark": 4194304,
  "room_ttl": 600,
  "sweep_interval": 60,
  "output_dir": "./received",
  "log_level": "INFO"
}
"""


if __name__ == "__main__":
    # Print example config
    print("Example configuration file (config.json):")
    print(EXAMPLE_CONFIG)

"""Simple YAML configuration loader for Meetsum."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from ..retry import RetryPolicy

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "MEETSUM_TRANSCRIPTION_API_KEY"

DEFAULTS: Dict[str, Any] = {
    "transcription": {
        "endpoint": "https://api.openai.com/v1/audio/transcriptions",
        "model": "whisper-1",
        "language": "ko",
        "timeout_seconds": 900,
    },
    "relay": {
        "timeout_seconds": 900,
    },
    "pipeline": {
        "chunk_threshold_bytes": 20 * 1024 * 1024,
        "chunk_duration_seconds": 600,
    },
    "retry": {
        "max_attempts": 1,
        "initial_delay_seconds": 2.0,
        "backoff_factor": 2.0,
    },
    "audio": {
        "sample_rate": 44100,
        "channels": 1,
        "frames_per_buffer": 1024,
        "meter_interval_seconds": 0.05,
        "level_floor_db": -60.0,
    },
    "playback": {
        "position_interval_seconds": 0.1,
    },
    "storage": {
        "temp_directory": "tmp",
    },
    "logging": {
        "level": "INFO",
        "file_path": "logs/meetsum.log",
        "console_output": True,
    },
}


class MeetsumConfig:
    """Meetsum configuration loader."""

    def __init__(self, config_path: str):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file.
        """
        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[str] = None) -> "MeetsumConfig":
        """Build a configuration from an in-memory mapping (no file involved)."""
        instance = cls.__new__(cls)
        instance.config_file = Path(base_dir or ".") / "meetsum.yaml"
        instance.config = _merge(DEFAULTS, data)
        instance._resolve_paths(instance.config)
        return instance

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)

            if not config:
                raise ValueError("Configuration file is empty")

            config = _merge(DEFAULTS, config)
            self._resolve_paths(config)

            logger.info("Configuration loaded successfully")
            return config

        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except ValueError:
            raise
        except Exception as e:
            raise ValueError(f"Failed to load configuration: {e}")

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        temp_dir = config['storage'].get('temp_directory')
        if temp_dir and not os.path.isabs(temp_dir):
            config['storage']['temp_directory'] = str(config_dir / temp_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'transcription.language').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_transcription_api_key(self) -> str:
        """Get the speech-to-text bearer token - raises if not configured."""
        api_key = self.get('transcription.api_key') or os.environ.get(API_KEY_ENV_VAR)
        if not api_key:
            raise ValueError(
                f"Transcription API key not configured (set transcription.api_key or {API_KEY_ENV_VAR})"
            )
        return api_key

    def get_relay_endpoint(self) -> str:
        """Get the summary relay URL - raises if not configured."""
        endpoint = self.get('relay.endpoint')
        if not endpoint:
            raise ValueError("Relay endpoint not configured (relay.endpoint)")
        return endpoint

    def get_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=int(self.get('retry.max_attempts', 1)),
            initial_delay_seconds=float(self.get('retry.initial_delay_seconds', 2.0)),
            backoff_factor=float(self.get('retry.backoff_factor', 2.0)),
        )

    def get_temp_directory(self) -> str:
        """Get temporary audio directory path."""
        temp_dir = self.get('storage.temp_directory', 'tmp')
        return str(Path(temp_dir).absolute())


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` onto a copy of ``base``."""
    merged = {key: (dict(value) if isinstance(value, dict) else value) for key, value in base.items()}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged

"""
Configuration management for tutor_cli.
Handles loading, saving, and accessing configuration from JSON files and environment variables.
"""
import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional

from .constants import (
    CONFIG_DIR,
    CONFIG_FILE,
    DEFAULT_CODE_THEME,
    DEFAULT_FRAME_INTERVAL_MS,
    DEFAULT_MAX_CHUNK,
    DEFAULT_MIN_CHUNK,
    DEFAULT_THEME,
    DEFAULT_TICK_INTERVAL_MS,
    MAX_ENVELOPE_DEPTH,
    MAX_UNESCAPE_LAYERS,
    RECOVERABLE_STATUSES,
)


logger = logging.getLogger(__name__)


@dataclass
class RevealConfig:
    """Typing-reveal configuration."""
    min_chunk: int = DEFAULT_MIN_CHUNK
    max_chunk: int = DEFAULT_MAX_CHUNK
    tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS
    frame_interval_ms: int = DEFAULT_FRAME_INTERVAL_MS


@dataclass
class UIConfig:
    """UI-specific configuration."""
    theme: str = DEFAULT_THEME
    code_theme: str = DEFAULT_CODE_THEME
    animate: bool = True
    show_links: bool = True
    show_follow_ups: bool = True


@dataclass
class RecoveryConfig:
    """Failed-generation recovery configuration."""
    recoverable_statuses: list = field(default_factory=lambda: list(RECOVERABLE_STATUSES))
    max_unescape_layers: int = MAX_UNESCAPE_LAYERS
    max_envelope_depth: int = MAX_ENVELOPE_DEPTH


@dataclass
class AppConfig:
    """Main application configuration."""
    reveal: RevealConfig = field(default_factory=RevealConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)


# env var -> (section, key, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    'TUTOR_CLI_REVEAL_MIN_CHUNK': ('reveal', 'min_chunk', int),
    'TUTOR_CLI_REVEAL_MAX_CHUNK': ('reveal', 'max_chunk', int),
    'TUTOR_CLI_TICK_INTERVAL_MS': ('reveal', 'tick_interval_ms', int),
    'TUTOR_CLI_NO_ANIMATE': ('ui', 'animate', lambda v: v.strip().lower() not in ("1", "true", "yes", "on")),
}


def load_config(path: Path) -> AppConfig:
    """
    Load configuration from a JSON file.

    A missing file yields defaults. A corrupt or mistyped file is reported
    as a warning and also yields defaults.

    Args:
        path: Path to the JSON config file

    Returns:
        The loaded AppConfig
    """
    config = AppConfig()
    if not path.exists():
        return config

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if 'reveal' in data:
            config.reveal = RevealConfig(**data['reveal'])
        if 'ui' in data:
            config.ui = UIConfig(**data['ui'])
        if 'recovery' in data:
            config.recovery = RecoveryConfig(**data['recovery'])
    except (json.JSONDecodeError, TypeError, OSError) as e:
        logger.warning("Failed to load config file %s: %s", path, e)
        config = AppConfig()

    return config


def apply_env_overrides(config: AppConfig, environ: Optional[dict] = None) -> AppConfig:
    """Apply TUTOR_CLI_* environment variables on top of ``config``."""
    environ = os.environ if environ is None else environ

    for env_name, (section, key, convert) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        try:
            setattr(getattr(config, section), key, convert(value))
        except ValueError:
            logger.warning("Ignoring invalid value for %s: %r", env_name, value)

    return config


class ConfigManager:
    """
    Manages application configuration with support for JSON files and environment variables.

    Environment variables take precedence over config file values.
    """

    _instance: Optional['ConfigManager'] = None

    def __new__(cls, config_file: Optional[Path] = None) -> 'ConfigManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_file: Optional[Path] = None) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._config_file = Path(config_file) if config_file else CONFIG_FILE
        self._config: AppConfig = AppConfig()
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from the JSON file, creating it on first run."""
        if not self._config_file.exists():
            self._config = apply_env_overrides(AppConfig())
            try:
                self._save_config()
            except OSError as e:
                logger.warning("Could not write default config %s: %s", self._config_file, e)
            return

        self._config = apply_env_overrides(load_config(self._config_file))

    def _save_config(self) -> None:
        """Save current configuration to JSON file."""
        if self._config_file == CONFIG_FILE:
            CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        data = {
            'reveal': asdict(self._config.reveal),
            'ui': asdict(self._config.ui),
            'recovery': asdict(self._config.recovery),
        }

        with open(self._config_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

    @property
    def config(self) -> AppConfig:
        """Get the current configuration."""
        return self._config

    @property
    def reveal(self) -> RevealConfig:
        """Get reveal configuration."""
        return self._config.reveal

    @property
    def ui(self) -> UIConfig:
        """Get UI configuration."""
        return self._config.ui

    @property
    def recovery(self) -> RecoveryConfig:
        """Get recovery configuration."""
        return self._config.recovery

    def update_ui(self, **kwargs: Any) -> None:
        """Update UI configuration for this run (not persisted)."""
        for key, value in kwargs.items():
            if hasattr(self._config.ui, key):
                setattr(self._config.ui, key, value)

    def save(self) -> None:
        """Explicitly save configuration."""
        self._save_config()

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the shared instance so the next access reloads from disk."""
        cls._instance = None


def get_config(config_file: Optional[Path] = None) -> ConfigManager:
    """Get the global configuration manager instance."""
    return ConfigManager(config_file)

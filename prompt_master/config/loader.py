"""
Configuration management and loading.

Handles application settings read from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "prompt_master.yaml"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class DatabaseConfig:
    """Relational backend settings. Presence of this section selects SQLite."""
    path: str = "prompt_master.db"

    def __post_init__(self):
        if not self.path:
            raise ValueError("database.path cannot be empty")


@dataclass(frozen=True)
class LocalStoreConfig:
    """Key-value fallback settings."""
    data_dir: str = ".prompt_master"

    def __post_init__(self):
        if not self.data_dir:
            raise ValueError("local.data_dir cannot be empty")


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window limits for generation requests."""
    window_ms: int = 60_000
    max_requests: int = 10
    cleanup_interval_ms: int = 300_000

    def __post_init__(self):
        """Validate limits are positive."""
        if self.window_ms <= 0:
            raise ValueError("rate_limit.window_ms must be > 0")
        if self.max_requests <= 0:
            raise ValueError("rate_limit.max_requests must be > 0")
        if self.cleanup_interval_ms <= 0:
            raise ValueError("rate_limit.cleanup_interval_ms must be > 0")


@dataclass(frozen=True)
class GenerationConfig:
    """Text-generation client settings."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 8000
    timeout_seconds: float = 60.0

    def __post_init__(self):
        if not self.model or not self.model.strip():
            raise ValueError("generation.model cannot be empty")
        if not 0 <= self.temperature <= 2:
            raise ValueError("generation.temperature must be between 0 and 2")
        if self.max_tokens <= 0:
            raise ValueError("generation.max_tokens must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("generation.timeout_seconds must be > 0")


@dataclass(frozen=True)
class AdminConfig:
    """Administrator account seeded on first init."""
    name: str = "Administrator"
    email: str = "admin@example.com"
    password: str = "Admin12345"


@dataclass(frozen=True)
class SessionConfig:
    path: str = ".prompt_master/session.json"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "WARNING"
    file: Optional[str] = None

    def __post_init__(self):
        if self.level not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {sorted(LOG_LEVELS)}")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    database: Optional[DatabaseConfig] = None
    local: LocalStoreConfig = field(default_factory=LocalStoreConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def backend(self) -> str:
        """Name of the persistence backend this configuration selects."""
        return "sqlite" if self.database is not None else "local"


# section name -> (dataclass, {key: accepted types})
_SECTIONS = {
    "database": (DatabaseConfig, {"path": (str,)}),
    "local": (LocalStoreConfig, {"data_dir": (str,)}),
    "rate_limit": (RateLimitConfig, {
        "window_ms": (int,),
        "max_requests": (int,),
        "cleanup_interval_ms": (int,),
    }),
    "generation": (GenerationConfig, {
        "model": (str,),
        "temperature": (int, float),
        "max_tokens": (int,),
        "timeout_seconds": (int, float),
    }),
    "admin": (AdminConfig, {"name": (str,), "email": (str,), "password": (str,)}),
    "session": (SessionConfig, {"path": (str,)}),
    "logging": (LoggingConfig, {"level": (str,), "file": (str, type(None))}),
}


def load_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys and
    wrongly typed values are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, data in raw_config.items():
        # An empty "database:" section still selects the SQLite backend
        sections[name] = _parse_section(name, {} if data is None else data)

    return AppConfig(**sections)


def load_config_or_default(path: Optional[str] = None) -> AppConfig:
    """Load configuration, falling back to defaults (local mode) if the file is absent."""
    path = path or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return AppConfig()
    return load_config(path)


def _parse_section(name: str, data: Any):
    """Parse and validate one configuration section.

    Args:
        name: Section name, used for error messages
        data: Raw section data

    Returns:
        The section's config dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    config_cls, allowed = _SECTIONS[name]
    unknown_keys = set(data.keys()) - set(allowed)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        types = allowed[key]
        # bool is an int subclass; never accept it for numeric settings
        if isinstance(value, bool) or not isinstance(value, types):
            expected = " or ".join(t.__name__ for t in types)
            raise ValueError(f"'{name}.{key}' must be of type {expected}")
        values[key] = value

    return config_cls(**values)

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .url_tools import is_valid_url


@dataclass
class ScopeConfig:
    recrawl_seed: bool = False
    allow_patterns: List[str] = field(default_factory=list)
    deny_patterns: List[str] = field(default_factory=list)


@dataclass
class ExtractConfig:
    keep_query: bool = False
    content_types: List[str] = field(default_factory=lambda: ["text/html", "application/xhtml+xml"])

    def __post_init__(self):
        self.content_types = [ct.strip().lower() for ct in self.content_types if ct and ct.strip()]


@dataclass
class LimitsConfig:
    concurrency: int = 4
    req_per_sec: float = 0.0
    connect_timeout_ms: int = 4000
    read_timeout_ms: int = 15000
    max_retries: int = 3
    backoff_base_ms: int = 500
    backoff_cap_ms: int = 8000
    http2: bool = False

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError("limits.concurrency must be >= 1")
        if self.req_per_sec < 0:
            raise ValueError("limits.req_per_sec must be >= 0")
        if self.max_retries < 0:
            raise ValueError("limits.max_retries must be >= 0")
        if self.backoff_cap_ms < self.backoff_base_ms:
            raise ValueError("limits.backoff_cap_ms must be >= backoff_base_ms")


@dataclass
class LogsConfig:
    log_file: Optional[str] = None
    log_level: str = "INFO"
    buffer_size: int = 1000

    def __post_init__(self):
        levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if not isinstance(self.log_level, str) or self.log_level.upper() not in levels:
            raise ValueError(f"logs.log_level is not a valid level: {self.log_level}")
        if self.buffer_size < 1:
            raise ValueError("logs.buffer_size must be >= 1")


@dataclass
class InquireConfig:
    seed: str
    max_scheduled: int = 5
    discovery_capacity: int = 1
    user_agent: str = "inquire/0.1 (+https://github.com/kevinschoon/inquire)"

    scope: ScopeConfig = field(default_factory=ScopeConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)

    def __post_init__(self):
        self.seed = (self.seed or "").strip()
        if not self.seed:
            raise ValueError("seed cannot be empty")
        if not is_valid_url(self.seed):
            raise ValueError(f"seed must be an absolute http(s) URL: {self.seed}")
        if self.max_scheduled < 1:
            raise ValueError("max_scheduled must be >= 1")
        if self.discovery_capacity < 1:
            raise ValueError("discovery_capacity must be >= 1")
        if not self.user_agent:
            raise ValueError("user_agent cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InquireConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        try:
            return cls(
                seed=data.get("seed", ""),
                max_scheduled=data.get("max_scheduled", 5),
                discovery_capacity=data.get("discovery_capacity", 1),
                user_agent=data.get("user_agent", cls.user_agent),
                scope=ScopeConfig(**get_section(data, "scope")),
                extract=ExtractConfig(**get_section(data, "extract")),
                limits=LimitsConfig(**get_section(data, "limits")),
                logs=LogsConfig(**get_section(data, "logs")),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str, **overrides) -> "InquireConfig":
        """Load configuration from YAML; non-None ``overrides`` win over the file."""
        data = load_yaml_config(config_path)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)


def load_yaml_config(path: str) -> Dict[str, Any]:
    """Load a YAML configuration file into a dictionary."""
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return data


def get_section(config: Dict[str, Any], section: str) -> Dict[str, Any]:
    """Return a configuration section, ensuring it is a mapping."""
    value = config.get(section, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{section}' must be a mapping.")
    return value

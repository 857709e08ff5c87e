"""Configuration management for lanegraph using Pydantic models."""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

from PIL import ImageColor
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lanegraph.errors import ConfigError

CONFIG_FILE_NAME = ".lanegraph.json"
APP_DIR_NAME = "lanegraph"

DEFAULT_PALETTE = [
    "#e06c76",
    "#98c379",
    "#e5c07b",
    "#61afef",
    "#c678dd",
    "#56b6c2",
]


class OrderMode(str, Enum):
    """Commit display orderings."""
    CHRONOLOGICAL = "chronological"
    TOPOLOGICAL = "topological"


class ProtocolChoice(str, Enum):
    """Terminal image protocol selectors."""
    AUTO = "auto"
    ITERM = "iterm"
    KITTY = "kitty"


class CellWidthMode(str, Enum):
    """Graph cell width modes; auto is resolved against the terminal width."""
    AUTO = "auto"
    DOUBLE = "double"
    SINGLE = "single"


class EdgeStyle(str, Enum):
    """Edge drawing styles."""
    ROUNDED = "rounded"
    ANGULAR = "angular"


class LogLevel(str, Enum):
    """Logging levels."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"

    def to_logging_level(self) -> int:
        return {
            LogLevel.ERROR: logging.ERROR,
            LogLevel.WARN: logging.WARNING,
            LogLevel.INFO: logging.INFO,
            LogLevel.DEBUG: logging.DEBUG,
        }[self]


def _validate_color(value: str) -> str:
    try:
        ImageColor.getrgb(value)
    except ValueError:
        raise ValueError(f"invalid color: {value!r}")
    return value


class GraphConfig(BaseModel):
    """Graph layout and rendering configuration section."""
    order: OrderMode = OrderMode.CHRONOLOGICAL
    protocol: ProtocolChoice = ProtocolChoice.AUTO
    cell_width: CellWidthMode = Field(alias="cellWidth", default=CellWidthMode.AUTO)
    edge_style: EdgeStyle = Field(alias="edgeStyle", default=EdgeStyle.ROUNDED)
    palette: list[str] = Field(default_factory=lambda: list(DEFAULT_PALETTE))
    edge_color: str = Field(alias="edgeColor", default="#ffffff")
    background_color: str = Field(alias="backgroundColor", default="#00000000")
    preload: bool = False
    max_count: int | None = Field(alias="maxCount", default=None)
    tile_rows: int = Field(alias="tileRows", default=1)

    @field_validator("palette")
    @classmethod
    def validate_palette(cls, v):
        if not v:
            raise ValueError("palette must contain at least one color")
        return [_validate_color(c) for c in v]

    @field_validator("edge_color", "background_color")
    @classmethod
    def validate_single_color(cls, v):
        return _validate_color(v)

    @field_validator("max_count")
    @classmethod
    def validate_max_count(cls, v):
        if v is not None and v < 1:
            raise ValueError("max_count must be >= 1")
        return v

    @field_validator("tile_rows")
    @classmethod
    def validate_tile_rows(cls, v):
        if v < 1:
            raise ValueError("tile_rows must be >= 1")
        return v

    model_config = ConfigDict(populate_by_name=True)


class CacheConfig(BaseModel):
    """Render cache configuration section."""
    enabled: bool = True
    dir: str | None = None

    def resolve_dir(self) -> Path:
        """Cache directory, defaulting to $XDG_CACHE_HOME/lanegraph."""
        if self.dir:
            return Path(self.dir).expanduser()
        base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
        return Path(base) / APP_DIR_NAME


class LoggingConfig(BaseModel):
    """Logging configuration section."""
    level: LogLevel = LogLevel.WARN


class LanegraphConfig(BaseModel):
    """Complete lanegraph configuration model."""
    graph: GraphConfig = Field(default_factory=GraphConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid")


def load_config(config_path: str | Path | None = None) -> LanegraphConfig:
    """Load configuration from file with fallback to defaults.

    Args:
        config_path: Optional path to configuration file. If None, searches
                    current directory and parents for .lanegraph.json, then
                    the user config directory

    Returns:
        LanegraphConfig: Loaded and validated configuration

    Raises:
        ConfigError: If the configuration file is invalid
    """
    if config_path is None:
        config_path = find_config_file()
    else:
        config_path = Path(config_path)

    if config_path and config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                config_data = json.load(f)
            return LanegraphConfig(**config_data)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file {config_path}: {e}")
        except (ValidationError, TypeError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}")
    else:
        return LanegraphConfig()


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Find .lanegraph.json by searching up the directory tree.

    Falls back to $XDG_CONFIG_HOME/lanegraph/config.json.

    Args:
        start_dir: Directory to start search from (default: current directory)

    Returns:
        Path to config file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = Path(start_dir).resolve()

    while True:
        config_file = current / CONFIG_FILE_NAME
        if config_file.exists():
            return config_file

        parent = current.parent
        if parent == current:
            break
        current = parent

    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    user_config = Path(base) / APP_DIR_NAME / "config.json"
    if user_config.exists():
        return user_config

    return None


def apply_cli_overrides(config: LanegraphConfig, **overrides: Any) -> LanegraphConfig:
    """Return a copy of config with every non-None command-line value applied.

    Keys are GraphConfig field names plus ``cache_enabled`` and ``log_level``.
    Command-line values always take precedence over the configuration file.
    """
    graph_updates = {}
    cache_updates = {}
    logging_updates = {}

    for name, value in overrides.items():
        if value is None:
            continue
        if name == "cache_enabled":
            cache_updates["enabled"] = value
        elif name == "log_level":
            logging_updates["level"] = LogLevel(value)
        elif name in GraphConfig.model_fields:
            graph_updates[name] = value
        else:
            raise ConfigError(f"Unknown override: {name}")

    try:
        # Round-trip through validation so overrides get the same checks as the file
        graph = GraphConfig.model_validate({**config.graph.model_dump(), **graph_updates})
    except ValidationError as e:
        raise ConfigError(f"Invalid command-line option: {e}")

    return config.model_copy(update={
        "graph": graph,
        "cache": config.cache.model_copy(update=cache_updates),
        "logging": config.logging.model_copy(update=logging_updates),
    })

"""
Configuration loading and validation for Lightswitch.

The configuration is read once at startup; changes on disk only take
effect after a restart.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

RULES_FILE_NAME = "process-monitor.rules"


class GlobalConfig(BaseModel):
    """Process-wide switches."""
    enable_experimental_features: bool = False
    detect_deadlocks: bool = False


class DispatchConfig(BaseModel):
    """How actions reach the lighting daemon."""
    type: str = "dbus"  # "dbus", "log"
    timeout_seconds: float = Field(default=4.0, gt=0)
    fail_fast: bool = True  # Stop the dispatch loop on the first failed call or reload
    config: dict[str, Any] = Field(default_factory=dict)  # Type-specific configuration


class WatchConfig(BaseModel):
    """Filesystem watcher settings."""
    debounce_seconds: float = Field(default=1.0, ge=0)


class LoopConfig(BaseModel):
    """Dispatch loop settings."""
    poll_interval_seconds: float = Field(default=1.0, gt=0)


class Config(BaseModel):
    """Main configuration for Lightswitch."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    state_dir: str = "/var/lib/lightswitch"
    rules_file: str | None = None  # Defaults to <state_dir>/process-monitor.rules
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)

    @property
    def rules_path(self) -> Path:
        """Location of the rule table on disk."""
        if self.rules_file:
            return Path(self.rules_file)
        return Path(self.state_dir) / RULES_FILE_NAME


def load_config(config_path: str | Path) -> Config:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with path.open('r', encoding='utf-8') as f:
        raw_config: dict[str, Any] | None = yaml.safe_load(f)

    # An empty file means "all defaults"
    if raw_config is None:
        raw_config = {}

    try:
        return Config.model_validate(raw_config)
    except ValidationError as e:
        raise ValueError(f"Configuration validation error: {e}") from e

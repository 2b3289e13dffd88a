"""
Configuration management and loading.

Builds the model registry and runtime settings from a YAML file.
"""

from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Dict, List

import yaml

from ai_quota_guard.core.day_boundary import resolve_timezone
from ai_quota_guard.core.registry import (
    CostClass,
    ModelDescriptor,
    ModelRegistry,
    RegistryConfigError,
    default_registry,
)
from ai_quota_guard.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class QuotaSettings:
    """Runtime settings for the quota engine."""
    timezone: str = "UTC"
    db_path: str = DEFAULT_DB_PATH
    degraded_increment: bool = False

    def __post_init__(self):
        """Validate the time zone is resolvable."""
        try:
            resolve_timezone(self.timezone)
        except ValueError as e:
            raise RegistryConfigError(str(e))

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)


@dataclass(frozen=True)
class QuotaConfig:
    """Complete quota configuration."""
    registry: ModelRegistry
    settings: QuotaSettings = field(default_factory=QuotaSettings)


def default_config() -> QuotaConfig:
    """Built-in model catalog with default settings."""
    return QuotaConfig(registry=default_registry())


def load_quota_config(path: str) -> QuotaConfig:
    """Load and validate quota configuration from YAML file.

    The registry is validated in full before anything is returned, so a bad
    catalog stops the process at startup instead of producing nonsensical
    selections later.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated QuotaConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        RegistryConfigError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Quota config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise RegistryConfigError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise RegistryConfigError("Configuration must be a mapping")

    allowed_top_keys = {'models', 'settings'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise RegistryConfigError(f"Unknown configuration keys: {unknown_keys}")

    if 'models' not in raw_config:
        raise RegistryConfigError("Missing required 'models' section")

    models_data = raw_config['models']
    if not isinstance(models_data, list):
        raise RegistryConfigError("'models' must be a list")

    models: List[ModelDescriptor] = []
    for index, model_data in enumerate(models_data):
        if not isinstance(model_data, dict):
            raise RegistryConfigError(f"models[{index}] must be a dictionary")
        models.append(_parse_model(model_data, f"models[{index}]"))

    settings_data = raw_config.get('settings') or {}
    if not isinstance(settings_data, dict):
        raise RegistryConfigError("'settings' must be a dictionary")

    return QuotaConfig(
        registry=ModelRegistry(models),
        settings=_parse_settings(settings_data)
    )


def _parse_model(data: Dict, path: str) -> ModelDescriptor:
    """Parse and validate one model entry.

    Args:
        data: Model configuration data
        path: Path for error messages

    Returns:
        Validated ModelDescriptor

    Raises:
        RegistryConfigError: If configuration is invalid
    """
    required_keys = {'name', 'daily_limit', 'priority', 'cooldown_hours'}
    allowed_keys = required_keys | {'display_name', 'cost'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise RegistryConfigError(f"Unknown keys in {path}: {unknown_keys}")

    for key in sorted(required_keys):
        if key not in data:
            raise RegistryConfigError(f"Missing required '{key}' in {path}")

    name = data['name']
    if not isinstance(name, str) or not name.strip():
        raise RegistryConfigError(f"'name' in {path} must be a non-empty string")

    daily_limit = data['daily_limit']
    if isinstance(daily_limit, bool) or not isinstance(daily_limit, int) or daily_limit <= 0:
        raise RegistryConfigError(f"'daily_limit' in {path} must be an integer > 0")

    priority = data['priority']
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise RegistryConfigError(f"'priority' in {path} must be an integer")

    cooldown = data['cooldown_hours']
    if isinstance(cooldown, bool) or not isinstance(cooldown, (int, float)) or cooldown < 0:
        raise RegistryConfigError(f"'cooldown_hours' in {path} must be >= 0")

    cost_str = data.get('cost', CostClass.LOW.value)
    if not isinstance(cost_str, str):
        raise RegistryConfigError(f"'cost' in {path} must be a string")
    try:
        cost = CostClass(cost_str.lower())
    except ValueError:
        valid_costs = [cost.value for cost in CostClass]
        raise RegistryConfigError(f"'cost' in {path} must be one of: {valid_costs}")

    display_name = data.get('display_name', name)
    if not isinstance(display_name, str):
        raise RegistryConfigError(f"'display_name' in {path} must be a string")

    return ModelDescriptor(
        name=name,
        display_name=display_name,
        daily_limit=daily_limit,
        priority=priority,
        cost=cost,
        cooldown_hours=float(cooldown)
    )


def _parse_settings(data: Dict) -> QuotaSettings:
    allowed_keys = {'timezone', 'db_path', 'degraded_increment'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise RegistryConfigError(f"Unknown settings keys: {unknown_keys}")

    defaults = QuotaSettings()

    tz_name = data.get('timezone', defaults.timezone)
    if not isinstance(tz_name, str):
        raise RegistryConfigError("'timezone' must be a string")

    db_path = data.get('db_path', defaults.db_path)
    if not isinstance(db_path, str) or not db_path:
        raise RegistryConfigError("'db_path' must be a non-empty string")

    degraded = data.get('degraded_increment', defaults.degraded_increment)
    if not isinstance(degraded, bool):
        raise RegistryConfigError("'degraded_increment' must be true or false")

    return QuotaSettings(timezone=tz_name, db_path=db_path, degraded_increment=degraded)

"""
Config system - Layered typed configuration with validation.

Merge order (later overrides earlier):
1. BootConfig defaults
2. Config files (YAML or JSON)
3. .env file
4. Environment variables (BOOTURE_* prefix)
5. Manual overrides
"""

from dataclasses import MISSING, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, get_args, get_origin, get_type_hints
import json
import os
import types

import yaml
from dotenv import dotenv_values

from .faults import ConfigInvalidFault


@dataclass(frozen=True)
class BootConfig:
    """
    Settings for a bootstrap run.

    Attributes:
        acquire_timeout: Seconds a layer may take to acquire (None = no limit)
        strict_visibility: Hand each acquire function only the resources it needs
        log_level: Logging level used by the CLI
    """

    acquire_timeout: Optional[float] = None
    strict_visibility: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if self.acquire_timeout is not None and self.acquire_timeout <= 0:
            raise ConfigInvalidFault("acquire_timeout", "must be a positive number of seconds")


DEFAULT_CONFIG = BootConfig()


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Usage:
        loader = ConfigLoader.load(paths=["booture.yaml"], env_file=".env")
        config = loader.boot_config()
    """

    def __init__(self, env_prefix: str = "BOOTURE_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = "BOOTURE_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from every source.

        Args:
            paths: Config files (.yaml, .yml or .json); missing files are skipped
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        for path in paths or []:
            loader._load_file(Path(path))

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_file(self, path: Path):
        """Load config from a YAML or JSON file."""
        if not path.exists():
            return

        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            elif path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                raise ConfigInvalidFault(str(path), f"unsupported config file type '{path.suffix}'")

        if data:
            if not isinstance(data, dict):
                raise ConfigInvalidFault(str(path), "top level must be a mapping")
            self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load config from .env file."""
        if not Path(path).exists():
            return

        for key, value in dotenv_values(path).items():
            if key.startswith(self.env_prefix) and value is not None:
                self._set_key(key, value)

    def _load_from_env(self):
        """Load config from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_key(key, value)

    def _set_key(self, key: str, value: str):
        """Convert BOOTURE_ACQUIRE_TIMEOUT to acquire_timeout."""
        self.config_data[key[len(self.env_prefix):].lower()] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False
        if value.lower() in ("none", "null", ""):
            return None

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.config_data.get(key, default)

    def boot_config(self) -> BootConfig:
        """
        Build a validated BootConfig from the merged data.

        Unknown keys are ignored.

        Raises:
            ConfigInvalidFault: If a value has the wrong type
        """
        return self._instantiate_dataclass(BootConfig, self.config_data)

    def _instantiate_dataclass(self, config_class: Type, data: dict):
        """Instantiate dataclass config with validation."""
        hints = get_type_hints(config_class)
        kwargs = {}

        for field_info in fields(config_class):
            field_name = field_info.name
            field_type = hints[field_name]

            if field_name in data:
                value = data[field_name]

                # ints are accepted where floats are expected
                if field_type is float or get_args(field_type)[:1] == (float,):
                    if isinstance(value, int) and not isinstance(value, bool):
                        value = float(value)

                # "1" and "0" parse as ints; they are flags where bools are expected
                if field_type is bool and isinstance(value, int) and value in (0, 1):
                    value = bool(value)

                if not self._check_type(value, field_type):
                    raise ConfigInvalidFault(
                        field_name,
                        f"expected {getattr(field_type, '__name__', field_type)}, "
                        f"got {type(value).__name__}",
                    )

                kwargs[field_name] = value
            elif field_info.default is not MISSING:
                kwargs[field_name] = field_info.default
            elif field_info.default_factory is not MISSING:
                kwargs[field_name] = field_info.default_factory()
            else:
                raise ConfigInvalidFault(field_name, "required field not provided")

        return config_class(**kwargs)

    def _check_type(self, value: Any, expected_type: Type) -> bool:
        """Basic type checking."""
        origin = get_origin(expected_type)
        if origin is types.UnionType or str(origin) == "typing.Union":
            if value is None:
                return type(None) in get_args(expected_type)
            return any(
                self._check_type(value, arg)
                for arg in get_args(expected_type)
                if arg is not type(None)
            )

        if origin:
            return isinstance(value, origin)

        if expected_type is float and isinstance(value, bool):
            return False

        try:
            return isinstance(value, expected_type)
        except TypeError:
            return True

    def to_dict(self) -> dict:
        """Export all config as dictionary."""
        return self.config_data.copy()

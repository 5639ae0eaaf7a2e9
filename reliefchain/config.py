"""
ReliefChain Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (RELIEFCHAIN_*)
    2. Runtime overrides
    3. User config file (~/.reliefchain/config.yaml)
    4. Project config file (./reliefchain.yaml)
    5. Default values
"""

from __future__ import annotations

import copy
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        try:
            if target_type == bool:
                return value.lower() in ("true", "1", "yes", "on")  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
            elif target_type == list:
                return value.split(",")  # type: ignore
            else:
                return value  # type: ignore
        except ValueError as exc:
            raise ConfigError(f"Cannot coerce {value!r} to {target_type.__name__}") from exc

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _unbounded_or_positive(x: int) -> bool:
    return isinstance(x, int) and x >= 0


@dataclass
class RegistryConfig:
    """Limits and identities enforced by the supply registry."""
    max_uri_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=256,
        env_var="RELIEFCHAIN_MAX_URI_LENGTH",
        description="Maximum token uri length",
        validator=lambda x: x > 0,
    ))
    max_description_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=500,
        env_var="RELIEFCHAIN_MAX_DESCRIPTION_LENGTH",
        description="Maximum metadata description length",
        validator=lambda x: x > 0,
    ))
    max_tags: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10,
        env_var="RELIEFCHAIN_MAX_TAGS",
        description="Maximum number of tags per token",
        validator=lambda x: x >= 0,
    ))
    max_tag_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="RELIEFCHAIN_MAX_TAG_LENGTH",
        description="Maximum length of a single tag (0 = unbounded)",
        validator=_unbounded_or_positive,
    ))
    max_versions: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=5,
        env_var="RELIEFCHAIN_MAX_VERSIONS",
        description="Version history capacity per token",
        validator=lambda x: x > 0,
    ))
    max_licenses: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="RELIEFCHAIN_MAX_LICENSES",
        description="License capacity per token (0 = unbounded)",
        validator=_unbounded_or_positive,
    ))
    max_collaborators: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="RELIEFCHAIN_MAX_COLLABORATORS",
        description="Collaborator capacity per token (0 = unbounded)",
        validator=_unbounded_or_positive,
    ))
    null_identity: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="invalid",
        env_var="RELIEFCHAIN_NULL_IDENTITY",
        description="Burn identity that can never receive a transfer",
    ))


@dataclass
class LedgerConfig:
    """Configuration for the host ledger emulation."""
    genesis_height: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=100,
        env_var="RELIEFCHAIN_GENESIS_HEIGHT",
        description="Logical clock value before the first committed call",
        validator=lambda x: x >= 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="RELIEFCHAIN_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="RELIEFCHAIN_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class ReliefChainConfig:
    """
    Root configuration.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


def apply_dict(config: ReliefChainConfig, data: Dict[str, Any]) -> None:
    """Apply nested dictionary values onto a configuration tree.

    Unknown keys raise ConfigError so typos in config files are not silently
    ignored.
    """
    def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
        for key, value in values.items():
            path = f"{prefix}{key}"
            if not hasattr(config_obj, key):
                raise ConfigError(f"Unknown config key: {path}")
            attr = getattr(config_obj, key)
            if isinstance(attr, ConfigValue):
                attr.set(value)
            elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                apply_to_config(attr, value, f"{path}.")
            else:
                raise ConfigError(f"Invalid config section: {path}")

    apply_to_config(config, data, "")


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = ReliefChainConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[ReliefChainConfig], None]] = []
        self._initialized = True

    @property
    def config(self) -> ReliefChainConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file.

        The file is applied to a copy first; the live configuration only
        changes when the whole file is valid.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

        if not data:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file must contain a mapping: {path}")

        candidate = copy.deepcopy(self._config)
        apply_dict(candidate, data)
        self._config = candidate
        if path not in self._config_paths:
            self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path("reliefchain.yaml"),
            Path("config/reliefchain.yaml"),
            Path.home() / ".reliefchain" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("registry.max_tags", 12)
        """
        parts = path.split(".")
        obj = self._config

        try:
            for part in parts[:-1]:
                obj = getattr(obj, part)
            attr = getattr(obj, parts[-1])
        except AttributeError as exc:
            raise ConfigError(f"Invalid config path: {path}") from exc

        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("registry.max_versions")
        """
        parts = path.split(".")
        obj = self._config

        try:
            for part in parts:
                obj = getattr(obj, part)
        except AttributeError as exc:
            raise ConfigError(f"Invalid config path: {path}") from exc

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[ReliefChainConfig], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        previous = self._config
        try:
            for path in self._config_paths:
                if path.exists():
                    self.load_from_file(path)
        except ConfigError:
            self._config = previous
            raise

        for watcher in self._watchers:
            watcher(self._config)

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> ReliefChainConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()

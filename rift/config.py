"""
Rift Configuration System

Configuration for the tracer, the VM and logging, backed by YAML files,
environment variables and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (RIFT_*)
    2. Runtime overrides (``ConfigManager.set``)
    3. Loaded files (later wins)
    4. Default values

Default files, loaded by ``ConfigManager.load_defaults()`` when present:
    ./rift.yaml, ./config/rift.yaml, ~/.rift/config.yaml

Files are validated against the exported JSON Schema before any value is
applied, so a bad file never leaves the configuration half-updated.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

from rift.errors import RiftError

T = TypeVar("T")


class ConfigError(RiftError):
    """Configuration error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    Values loaded from files sit below runtime values, so a file loaded
    after ``set()`` never replaces what was set.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    choices: Optional[List[T]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _file_value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        if self._value is not None:
            return self._value
        return self._file_value if self._file_value is not None else self.default

    def set(self, value: T) -> None:
        """Set the runtime value with validation."""
        self._check(value)
        self._value = value

    def set_file(self, value: T) -> None:
        """Set the value loaded from a configuration file."""
        self._check(value)
        self._file_value = value

    def reset(self) -> None:
        self._value = None
        self._file_value = None

    def _check(self, value: Any) -> None:
        if not self.is_valid(value):
            raise ConfigError(f"Invalid value for config: {value!r}")

    def is_valid(self, value: Any) -> bool:
        if type(value) is not type(self.default):
            return False
        if self.choices is not None and value not in self.choices:
            return False
        return self.validator is None or self.validator(value)

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            try:
                return int(value)  # type: ignore
            except ValueError as e:
                raise ConfigError(f"{self.env_var} must be an integer, got {value!r}") from e
        else:
            return value  # type: ignore

    def json_schema(self) -> Dict[str, Any]:
        types = {bool: "boolean", int: "integer", str: "string"}
        schema: Dict[str, Any] = {
            "type": types[type(self.default)],
            "default": self.default,
            "description": self.description,
        }
        if self.choices is not None:
            schema["enum"] = list(self.choices)
        return schema


@dataclass
class TracerConfig:
    """Configuration for contract tracing and lowering."""
    max_paths: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=256,
        env_var="RIFT_TRACER_MAX_PATHS",
        description="Maximum number of traced paths per entry point",
        validator=lambda x: x > 0,
    ))
    loop_unroll_limit: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16,
        env_var="RIFT_TRACER_LOOP_UNROLL_LIMIT",
        description="Times one branch site may repeat on a single path",
        validator=lambda x: x > 0,
    ))
    prune_dead_code: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="RIFT_TRACER_PRUNE_DEAD_CODE",
        description="Drop pure operations whose results are never used",
    ))


@dataclass
class VMConfig:
    """Configuration for the Rift VM."""
    gas_limit: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1_000_000,
        env_var="RIFT_VM_GAS_LIMIT",
        description="Gas limit for internal messages and get methods",
        validator=lambda x: x > 0,
    ))
    gas_credit: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10_000,
        env_var="RIFT_VM_GAS_CREDIT",
        description="Gas available to external messages before ACCEPT",
        validator=lambda x: x > 0,
    ))
    max_stack_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=255,
        env_var="RIFT_VM_MAX_STACK_DEPTH",
        description="Maximum stack depth",
        validator=lambda x: 0 < x <= 4096,
    ))
    default_now: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1_700_000_000,
        env_var="RIFT_VM_DEFAULT_NOW",
        description="Unix time reported by NOW unless overridden per instance",
        validator=lambda x: 0 <= x < (1 << 32),
    ))
    workchain: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="RIFT_VM_WORKCHAIN",
        description="Workchain used for contract addresses",
        validator=lambda x: -128 <= x <= 127,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="warning",
        env_var="RIFT_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        choices=["debug", "info", "warning", "error", "critical"],
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="RIFT_LOG_FORMAT",
        description="Log format (json, text)",
        choices=["json", "text"],
    ))


@dataclass
class RiftConfig:
    """
    Root configuration for Rift.
    """
    tracer: TracerConfig = field(default_factory=TracerConfig)
    vm: VMConfig = field(default_factory=VMConfig)
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

        self._config = RiftConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> RiftConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data:
            self.load_dict(data, source=str(path))
        self._config_paths.append(path)

    def load_dict(self, data: Any, source: str = "<dict>") -> None:
        """Validate a configuration mapping and apply it."""
        errors = [
            f"{error.json_path}: {error.message}"
            for error in Draft202012Validator(self.export_schema()).iter_errors(data)
        ]
        if errors:
            raise ConfigError(f"Invalid configuration in {source}: " + "; ".join(errors))
        self._apply_dict(data)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path("rift.yaml"),
            Path("config/rift.yaml"),
            Path.home() / ".rift" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set_file(value)
                elif isinstance(value, dict):
                    apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, "__dataclass_fields__") or part not in obj.__dataclass_fields__:
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("vm.gas_limit", 5000000)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("vm.gas_limit")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Drop runtime and file overrides, keeping defaults and environment."""
        def reset_config(obj: Any) -> None:
            if isinstance(obj, ConfigValue):
                obj.reset()
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    reset_config(getattr(obj, field_name))

        reset_config(self._config)
        self._config_paths.clear()

    def validate(self) -> List[str]:
        """
        Validate all effective configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
                    return
                if not obj.is_valid(value):
                    errors.append(f"{path}: validation failed for value {value!r}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export the configuration file JSON Schema (Draft 2020-12)."""
        def extract_schema(obj: Any) -> Dict[str, Any]:
            if isinstance(obj, ConfigValue):
                return obj.json_schema()
            return {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    name: extract_schema(getattr(obj, name))
                    for name in obj.__dataclass_fields__
                },
            }

        schema = extract_schema(self._config)
        schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
        schema["title"] = "Rift configuration"
        return schema


def get_config() -> RiftConfig:
    """Get the current Rift configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()

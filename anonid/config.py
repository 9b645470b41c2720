"""
Authorization Core Configuration

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (ANONID_*)
    2. Runtime overrides
    3. User config file (~/.anonid/config.yaml)
    4. Project config file (./anonid.yaml)
    5. Default values

Example ``anonid.yaml``:

    core:
      administrator: did:key:z6Mk...
      event_log_path: var/anonid-events.jsonl
    verification:
      proof_system: groth16
      verification_key_path: circuits/verification_key.json
      freshness_window_seconds: 300
    observability:
      log_level: info
      log_format: json

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from anonid.observability import CoreLayer, LogLevel, get_logger

T = TypeVar("T")

log = get_logger("config", CoreLayer.CONFIG)


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
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: Any) -> None:
        """Set the value with coercion and validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            try:
                return int(value)  # type: ignore
            except ValueError as e:
                raise ValidationError(f"Expected integer, got {value!r}") from e
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        self._callbacks.append(callback)


@dataclass
class CoreSettings:
    """Identity of the administrator and where the event log lives."""
    administrator: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="ANONID_ADMINISTRATOR",
        description="Principal allowed to add and remove trusted issuers",
        validator=lambda x: isinstance(x, str),
    ))
    event_log_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="ANONID_EVENT_LOG",
        description="JSON-lines event log path (empty = in-memory only)",
        validator=lambda x: isinstance(x, str),
    ))
    fsync: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="ANONID_EVENT_LOG_FSYNC",
        description="fsync the event log after every append",
    ))


@dataclass
class VerificationSettings:
    """Proof verification settings."""
    proof_system: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="pedersen",
        env_var="ANONID_PROOF_SYSTEM",
        description="Proof system (groth16, pedersen)",
        validator=lambda x: x in ("groth16", "pedersen"),
    ))
    verification_key_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="ANONID_VERIFICATION_KEY",
        description="snarkjs verification_key.json (required for groth16)",
        validator=lambda x: isinstance(x, str),
    ))
    freshness_window_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="ANONID_FRESHNESS_WINDOW",
        description="Max |now - currentTimestamp| accepted in public inputs (0 = unchecked)",
        validator=lambda x: isinstance(x, int) and x >= 0,
    ))


@dataclass
class ObservabilitySettings:
    """Logging configuration."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="ANONID_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in {level.value for level in LogLevel},
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="ANONID_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))
    audit_max_records: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10000,
        env_var="ANONID_AUDIT_MAX_RECORDS",
        description="Audit records retained in memory",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))


@dataclass
class AnonidConfig:
    """
    Root configuration.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    core: CoreSettings = field(default_factory=CoreSettings)
    verification: VerificationSettings = field(default_factory=VerificationSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


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

        self._config = AnonidConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> AnonidConfig:
        return self._config

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._config_paths)

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")

        self._apply_dict(data)
        self._config_paths.append(path)
        log.info("Configuration loaded", operation="load", path=str(path))

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path.home() / ".anonid" / "config.yaml",
            Path("config/anonid.yaml"),
            Path("anonid.yaml"),
        ]

        # Later files override earlier ones
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration; unknown keys are errors."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}.{key}" if prefix else key
                if not hasattr(config_obj, "__dataclass_fields__") or key not in config_obj.__dataclass_fields__:
                    raise ConfigError(f"Unknown configuration key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif isinstance(value, dict):
                    apply_to_config(attr, value, path)
                else:
                    raise ConfigError(f"Configuration section {path} must be a mapping")

        apply_to_config(self._config, data, "")

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

        Example: config.set("verification.proof_system", "groth16")
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("core.administrator")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Drop runtime overrides and loaded files, returning to defaults."""
        self._config = AnonidConfig()
        self._config_paths = []

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
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value!r}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)

        if self.get("verification.proof_system") == "groth16" and not self.get("verification.verification_key_path"):
            errors.append("verification.verification_key_path: required when proof_system is groth16")

        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = obj.default
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config_manager() -> ConfigManager:
    return ConfigManager()


__all__ = [
    "ConfigError",
    "ValidationError",
    "ConfigValue",
    "CoreSettings",
    "VerificationSettings",
    "ObservabilitySettings",
    "AnonidConfig",
    "ConfigManager",
    "get_config_manager",
]

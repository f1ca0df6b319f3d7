"""Core configuration primitives for aku services.

Configuration values come from three layers, later layers winning:
service presets, the TOML config file, and environment variables named by
each field's ``env_var``.
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})
_MASK = "***"


class ConfigError(Exception):
    """Base exception for configuration-related errors."""


class ValidationError(ConfigError):
    """A configured value has the wrong type or is out of range."""

    def __init__(self, field_name: str, value: Any, message: str) -> None:
        self.field = field_name
        self.value = value
        self.message = message
        super().__init__(f"Validation failed for field '{field_name}': {message}")


class RequiredFieldError(ConfigError):
    """A required value was given neither in the file nor the environment."""

    def __init__(self, field_name: str) -> None:
        self.field = field_name
        super().__init__(f"Required field '{field_name}' is missing")


@dataclass
class FieldDefinition:
    """One configuration field: type, default, environment override and checks.

    ``secret`` fields are masked in ``repr`` and ``to_dict(redact=True)``.
    """

    name: str
    field_type: type[Any]
    default: Any = None
    required: bool = False
    description: str = ""
    validator: Callable[[Any], bool] | None = None
    env_var: str | None = None
    choices: list[Any] | None = None
    min_value: int | float | None = None
    max_value: int | float | None = None
    pattern: str | None = None
    secret: bool = False

    def __post_init__(self) -> None:
        if self.required and self.default is not None:
            raise ValueError(
                f"Field '{self.name}' cannot be both required and have a default value"
            )
        if self.choices and self.default not in self.choices:
            raise ValueError(f"Field '{self.name}' default value not in choices")

    def parse_env(self, raw: str) -> Any:
        """Convert an environment string to ``field_type``."""
        if self.field_type is bool:
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if self.field_type in (int, float):
            return self.field_type(raw)
        if self.field_type is list:
            return [item.strip() for item in raw.split(",") if item.strip()]
        return raw

    def coerce(self, value: Any) -> Any:
        # TOML has no separate float literal for whole numbers
        if self.field_type is float and type(value) is int:
            return float(value)
        if self.choices and isinstance(value, str):
            for choice in self.choices:
                if isinstance(choice, str) and choice.upper() == value.upper():
                    return choice
        return value

    def check(self, value: Any) -> None:
        """Raise ValidationError unless ``value`` satisfies every rule."""
        # bool is an int subclass; a flag is never a valid number
        if not isinstance(value, self.field_type) or (
            isinstance(value, bool) and self.field_type is not bool
        ):
            raise ValidationError(self.name, value, f"Expected {self.field_type.__name__}")
        if self.choices and value not in self.choices:
            raise ValidationError(self.name, value, f"Must be one of {self.choices}")
        if self.min_value is not None and value < self.min_value:
            raise ValidationError(self.name, value, f"Must be >= {self.min_value}")
        if self.max_value is not None and value > self.max_value:
            raise ValidationError(self.name, value, f"Must be <= {self.max_value}")
        if self.pattern and isinstance(value, str) and not re.match(self.pattern, value):
            raise ValidationError(self.name, value, f"Must match pattern {self.pattern}")
        if self.validator and not self.validator(value):
            raise ValidationError(self.name, value, "Custom validation failed")


class BaseConfig(ABC):
    """A configuration section built from its ``FieldDefinition`` list.

    Values are read from keyword arguments, then overridden from the
    environment, then validated. Unknown keyword arguments are ignored.
    """

    def __init__(self, **kwargs: Any) -> None:
        self._values: dict[str, Any] = {}
        fields = self.get_field_definitions()
        for field_def in fields:
            if field_def.name in kwargs:
                self._values[field_def.name] = kwargs[field_def.name]
        self._apply_environment(fields)
        self._validate(fields)

    def _apply_environment(self, fields: list[FieldDefinition]) -> None:
        for field_def in fields:
            if not field_def.env_var:
                continue
            raw = os.getenv(field_def.env_var)
            if raw is None:
                continue
            try:
                self._values[field_def.name] = field_def.parse_env(raw)
            except ValueError as exc:
                raise ValidationError(
                    field_def.name, raw, f"Cannot parse {field_def.env_var}: {exc}"
                ) from exc

    def _validate(self, fields: list[FieldDefinition]) -> None:
        for field_def in fields:
            value = self._values.get(field_def.name, field_def.default)
            if field_def.required and value in (None, ""):
                raise RequiredFieldError(field_def.name)
            if value is None:
                continue
            value = field_def.coerce(value)
            field_def.check(value)
            self._values[field_def.name] = value

    @classmethod
    @abstractmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        """Get field definitions for this configuration class."""

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._values:
            return self._values[name]
        raise AttributeError(f"Configuration field '{name}' not found")

    def to_dict(self, *, redact: bool = False) -> dict[str, Any]:
        values = self._values.copy()
        if redact:
            for field_def in self.get_field_definitions():
                if field_def.secret and values.get(field_def.name):
                    values[field_def.name] = _MASK
        return values

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict(redact=True)!r})"


class LoggingConfig(BaseConfig):
    """Logging configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="level",
                field_type=str,
                default="INFO",
                description="Log level",
                env_var="LOG_LEVEL",
                choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            ),
            FieldDefinition(
                name="json_logs",
                field_type=bool,
                default=True,
                description="Use JSON logging format",
                env_var="LOG_JSON",
            ),
            FieldDefinition(
                name="service_name",
                field_type=str,
                default="aku",
                description="Service name for logging",
                env_var="SERVICE_NAME",
            ),
            FieldDefinition(
                name="log_file",
                field_type=str,
                default="",
                description="Optional file receiving a JSON copy of every log record",
                env_var="LOG_FILE",
            ),
        ]


class ServiceConfig(BaseConfig):
    """HTTP listener of the sticker page server."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="port",
                field_type=int,
                default=8000,
                description="Sticker page server port",
                env_var="SERVICE_PORT",
                min_value=1,
                max_value=65535,
            ),
            FieldDefinition(
                name="host",
                field_type=str,
                default="0.0.0.0",
                description="Sticker page server bind address",
                env_var="SERVICE_HOST",
            ),
        ]

"""
Configuration File Schema.

This module describes which keys a configuration file table may contain and
validates tables against that description.

Key features:
- Type-checked fields with optional choices and min/max constraints
- Every field is optional; absent keys stay unset in the layer
- Unknown keys are rejected
"""

from dataclasses import dataclass
from typing import Any


class SchemaError(Exception):
    """Base exception for schema-related errors."""

    pass


class ValidationError(SchemaError):
    """Raised when value validation fails."""

    pass


def _type_name(type_: type | tuple[type, ...]) -> str:
    if isinstance(type_, tuple):
        return " or ".join(t.__name__ for t in type_)
    return type_.__name__


@dataclass
class ConfigField:
    """
    Represents one optional key of a configuration table.

    Attributes:
        type_: The expected type (or tuple of types) of the value
        description: Human-readable description
        min: Minimum value (for numbers)
        max: Maximum value (for numbers)
        choices: List of allowed values (optional)
        item_type: Expected type of list items or mapping values
    """

    type_: type | tuple[type, ...]
    description: str = ""
    min: Any = None
    max: Any = None
    choices: list[Any] | None = None
    item_type: type | None = None

    def __post_init__(self):
        """Validate field definition."""
        if self.choices is not None:
            if not isinstance(self.choices, list):
                raise SchemaError("choices must be a list")
            for choice in self.choices:
                if not isinstance(choice, self.type_):
                    raise SchemaError(
                        f"Choice {choice!r} does not match type {_type_name(self.type_)}"
                    )

    def validate(self, value: Any) -> None:
        """
        Validate a value against this field's constraints.

        Args:
            value: The value to validate

        Raises:
            ValidationError: If validation fails
        """
        # bool is an int subclass, but `port = true` is never meant
        if not isinstance(value, self.type_) or (
            isinstance(value, bool) and bool not in _as_tuple(self.type_)
        ):
            raise ValidationError(
                f"Expected type {_type_name(self.type_)}, got {type(value).__name__}"
            )

        if self.choices is not None and value not in self.choices:
            raise ValidationError(
                f"Value {value!r} not in allowed choices {self.choices}"
            )

        if isinstance(value, (int, float)):
            if self.min is not None and value < self.min:
                raise ValidationError(f"Value {value} is less than minimum {self.min}")
            if self.max is not None and value > self.max:
                raise ValidationError(
                    f"Value {value} is greater than maximum {self.max}"
                )

        if self.item_type is not None:
            items = value.values() if isinstance(value, dict) else value
            for item in items:
                if not isinstance(item, self.item_type):
                    raise ValidationError(
                        f"Expected items of type {self.item_type.__name__}, "
                        f"got {type(item).__name__}"
                    )


def _as_tuple(type_: type | tuple[type, ...]) -> tuple[type, ...]:
    return type_ if isinstance(type_, tuple) else (type_,)


def validate_table(
    table: dict[str, Any], schema: dict[str, ConfigField], section: str
) -> None:
    """
    Validate a configuration table against a schema.

    Args:
        table: The table to validate
        schema: The schema dictionary (field_name -> ConfigField)
        section: Table name used in error messages

    Raises:
        ValidationError: If a key is unknown or a value is invalid
    """
    for key in table:
        if key not in schema:
            raise ValidationError(f"Unknown configuration field: {section}.{key}")

    for field_name, field in schema.items():
        if field_name not in table:
            continue

        try:
            field.validate(table[field_name])
        except ValidationError as e:
            raise ValidationError(f"Field '{section}.{field_name}': {e}") from e


MODES = ["append", "replace"]

COMMON_SCHEMA: dict[str, ConfigField] = {
    "db_name": ConfigField(str, "Database to create and connect to"),
    "data_dir": ConfigField(str, "Data directory instead of a temporary one"),
    "port": ConfigField(int, "Port instead of a free one", min=1, max=65535),
    "socket": ConfigField(str, "Socket family", choices=["unix", "ip"]),
    "socket_address": ConfigField(str, "Loopback address for ip sockets"),
    "socket_directory": ConfigField(str, "Directory for unix sockets"),
    "start_timeout": ConfigField(
        (int, float), "Seconds to wait for readiness", min=0
    ),
    "client": ConfigField(dict, "Connection parameter overrides"),
    "initdb": ConfigField(dict, "initdb process overrides"),
    "createdb": ConfigField(dict, "createdb process overrides"),
    "postgres": ConfigField(dict, "postgres process and config overrides"),
}

CLIENT_SCHEMA: dict[str, ConfigField] = {
    "host": ConfigField(str, "Host or socket directory"),
    "port": ConfigField(int, "Port", min=1, max=65535),
    "dbname": ConfigField(str, "Database name"),
    "user": ConfigField(str, "User name"),
    "password": ConfigField(str, "Password"),
    "connect_timeout": ConfigField(int, "Connection timeout in seconds", min=0),
}

PROCESS_SCHEMA: dict[str, ConfigField] = {
    "program": ConfigField(str, "Program path or name"),
    "args": ConfigField(list, "Command-line arguments", item_type=str),
    "args_mode": ConfigField(str, "How args combine with the defaults", choices=MODES),
    "env": ConfigField(dict, "Environment variables", item_type=str),
    "env_mode": ConfigField(str, "How env combines with the defaults", choices=MODES),
    "cwd": ConfigField(str, "Working directory"),
}

POSTGRES_SCHEMA: dict[str, ConfigField] = {
    **PROCESS_SCHEMA,
    "config": ConfigField(str, "postgresql.conf text"),
    "config_mode": ConfigField(
        str, "How config combines with the defaults", choices=MODES
    ),
}

"""
Layered Configuration Model.

This module provides the partial, all-optional configuration records that
callers use to override the computed defaults.

Key features:
- Left-biased merging: a value set on the left layer wins
- Recursive merging of nested partial records
- Append/Replace tagged values for text, argument lists and environments
- An empty layer (`Plan()`) that is the identity of `merge`
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any, TypeVar, Union

from tmp_postgres.events import Event

P = TypeVar("P", bound="Partial")


@dataclass(frozen=True)
class Append:
    """Add `value` to whatever the layers on the right resolve to."""

    value: Any

    def __post_init__(self):
        object.__setattr__(self, "value", _freeze(self.value))


@dataclass(frozen=True)
class Replace:
    """Use exactly `value`, ignoring the layers on the right."""

    value: Any

    def __post_init__(self):
        object.__setattr__(self, "value", _freeze(self.value))


Lastoid = Union[Append, Replace]


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    if isinstance(value, Mapping):
        return dict(value)
    return value


def _concat(left: Any, right: Any) -> Any:
    # Mappings keep the left side on key conflicts, like every other field.
    if isinstance(left, Mapping):
        return {**right, **left}
    return left + right


def merge_lastoid(left: Lastoid, right: Lastoid) -> Lastoid:
    """
    Merge two Append/Replace values.

    Replace on the left wins outright. Append on the left is concatenated
    in front of the right value and takes the right value's tag.

    Args:
        left: The higher priority value
        right: The lower priority value

    Returns:
        The merged value
    """
    if isinstance(left, Replace):
        return left
    if isinstance(right, Replace):
        return Replace(_concat(left.value, right.value))
    return Append(_concat(left.value, right.value))


def _merge_value(left: Any, right: Any) -> Any:
    if left is None:
        return right
    if right is None:
        return left
    if isinstance(left, Partial):
        return left.merge(right)
    if isinstance(left, (Append, Replace)):
        return merge_lastoid(left, right)
    return left


class Partial:
    """Mixin for frozen dataclasses whose fields merge left-biased."""

    def merge(self: P, other: P) -> P:
        """
        Merge `other` underneath this layer.

        Args:
            other: The lower priority layer, of the same type

        Returns:
            A new layer where every field set here wins over `other`

        Raises:
            TypeError: If the layers are of different types
        """
        if type(other) is not type(self):
            raise TypeError(
                f"Cannot merge {type(self).__name__} with {type(other).__name__}"
            )
        return type(self)(
            **{
                f.name: _merge_value(getattr(self, f.name), getattr(other, f.name))
                for f in fields(self)
            }
        )

    @classmethod
    def empty(cls: type[P]) -> P:
        """Return the identity layer."""
        return cls()


def merge_all(*layers: P) -> P:
    """Merge layers from highest to lowest priority."""
    if not layers:
        raise ValueError("merge_all() needs at least one layer")
    result = layers[-1]
    for layer in reversed(layers[:-1]):
        result = layer.merge(result)
    return result


@dataclass(frozen=True)
class IpSocket:
    """Listen on a loopback TCP address."""

    address: str = "127.0.0.1"


@dataclass(frozen=True)
class UnixSocket:
    """Listen on a Unix-domain socket in `directory` (temporary if None)."""

    directory: str | None = None


SocketChoice = Union[IpSocket, UnixSocket]


@dataclass(frozen=True)
class PartialClientOptions(Partial):
    """libpq connection parameters used to reach the instance."""

    host: str | None = None
    port: int | None = None
    dbname: str | None = None
    user: str | None = None
    password: str | None = None
    connect_timeout: int | None = None


@dataclass(frozen=True)
class PartialProcessOptions(Partial):
    """
    One external program invocation, possibly incomplete.

    Attributes:
        name: Program to run, a path or a bare name
        cmd_line: Arguments as Append/Replace of a tuple of strings
        env: Environment as Append/Replace of a mapping
        cwd: Working directory
    """

    name: str | None = None
    cmd_line: Lastoid = field(default_factory=lambda: Append(()))
    env: Lastoid = field(default_factory=lambda: Append({}))
    cwd: str | None = None


@dataclass(frozen=True)
class PartialCommonOptions(Partial):
    """
    Settings shared by every process of one instance.

    Attributes:
        db_name: Database to create and connect to
        data_dir: Data directory to use instead of a temporary one
        port: Port to listen on instead of a free one
        socket_class: IpSocket or UnixSocket
        logger: Callback receiving every lifecycle Event
        client_options: Overrides for the connection parameters
        start_timeout: Seconds to wait for readiness, None waits forever
    """

    db_name: str | None = None
    data_dir: str | None = None
    port: int | None = None
    socket_class: SocketChoice | None = None
    logger: Callable[[Event], None] | None = None
    client_options: PartialClientOptions = field(default_factory=PartialClientOptions)
    start_timeout: float | None = None


@dataclass(frozen=True)
class PartialPostgresPlan(Partial):
    """postgresql.conf text plus the postgres process options."""

    config: Lastoid = field(default_factory=lambda: Append(""))
    options: PartialProcessOptions = field(default_factory=PartialProcessOptions)

    def __post_init__(self):
        # Config text is line based; keep every fragment newline terminated
        # so concatenated layers never run two settings together.
        text = self.config.value
        if text and not text.endswith("\n"):
            object.__setattr__(self, "config", type(self.config)(text + "\n"))


@dataclass(frozen=True)
class Plan(Partial):
    """
    A complete configuration layer.

    `init_db` and `create_db` are None when that step should not run; a
    present record, even an empty one, requests the step.
    """

    common: PartialCommonOptions = field(default_factory=PartialCommonOptions)
    init_db: PartialProcessOptions | None = None
    create_db: PartialProcessOptions | None = None
    postgres: PartialPostgresPlan = field(default_factory=PartialPostgresPlan)

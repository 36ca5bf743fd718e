"""
Resource Provisioning.

This module acquires and releases the resources one instance owns.

Key features:
- Temporary or caller-supplied data directories
- Unix-domain socket directories or loopback TCP addresses
- Free port discovery
- Release actions registered on an exit stack as soon as a resource exists
"""

import logging
import os
import shutil
import tempfile
from collections.abc import Callable
from contextlib import AsyncExitStack, ExitStack
from dataclasses import dataclass
from typing import Union

from testing.common.database import get_unused_port

from tmp_postgres.config.partial import (
    IpSocket,
    PartialClientOptions,
    PartialCommonOptions,
    SocketChoice,
    UnixSocket,
)
from tmp_postgres.events import Event, default_logger

logger = logging.getLogger(__name__)

DATA_DIR_PREFIX = "tmp-postgres-data"
SOCKET_DIR_PREFIX = "tmp-postgres-socket"
DEFAULT_DB_NAME = "test"


@dataclass(frozen=True)
class DirectoryType:
    """
    A directory owned by an instance.

    Attributes:
        path: Absolute path of the directory
        temporary: Whether the directory is removed on release
    """

    path: str
    temporary: bool


@dataclass(frozen=True)
class UnixSocketDirectory:
    """A resolved Unix-domain socket location."""

    directory: DirectoryType


SocketClass = Union[IpSocket, UnixSocketDirectory]


def initialize_directory(prefix: str, path: str | None) -> DirectoryType:
    """
    Create a fresh temporary directory or make sure `path` exists.

    Args:
        prefix: Prefix for the temporary directory name
        path: Directory to use, or None for a temporary one

    Returns:
        The owned directory

    Raises:
        OSError: If the directory cannot be created
    """
    if path is None:
        return DirectoryType(path=tempfile.mkdtemp(prefix=prefix), temporary=True)

    os.makedirs(path, exist_ok=True)
    return DirectoryType(path=os.path.abspath(path), temporary=False)


def cleanup_directory(directory: DirectoryType) -> None:
    """Remove a temporary directory. Failures are logged, not raised."""
    if not directory.temporary:
        return

    try:
        shutil.rmtree(directory.path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove %s: %s", directory.path, e)


def start_socket_class(choice: SocketChoice | None) -> SocketClass:
    """
    Resolve a socket choice into a concrete location.

    Unix sockets are the default on POSIX, loopback TCP elsewhere.
    """
    if choice is None:
        choice = UnixSocket() if os.name == "posix" else IpSocket()

    if isinstance(choice, IpSocket):
        return choice

    return UnixSocketDirectory(
        directory=initialize_directory(SOCKET_DIR_PREFIX, choice.directory)
    )


def stop_socket_class(socket_class: SocketClass) -> None:
    """Release a resolved socket location."""
    if isinstance(socket_class, UnixSocketDirectory):
        cleanup_directory(socket_class.directory)


def socket_class_to_host(socket_class: SocketClass) -> str:
    """Return the libpq `host` value for a socket location."""
    if isinstance(socket_class, IpSocket):
        return socket_class.address
    return socket_class.directory.path


def listen_address_config(socket_class: SocketClass) -> list[str]:
    """Return the postgresql.conf lines that make postgres listen there."""
    if isinstance(socket_class, IpSocket):
        return [
            f"listen_addresses = '{socket_class.address}'",
            "unix_socket_directories = ''",
        ]
    return [
        "listen_addresses = ''",
        f"unix_socket_directories = '{socket_class.directory.path}'",
    ]


def find_free_port() -> int:
    """Return a currently unused TCP port on the loopback interface."""
    return get_unused_port()


@dataclass(frozen=True)
class CommonOptions:
    """
    Resolved configuration shared by every process of one instance.

    Attributes:
        db_name: Database name
        data_dir: Data directory
        port: Port postgres listens on
        socket_class: Where postgres listens
        client_options: Caller overrides for the connection parameters
        logger: Lifecycle event callback
        start_timeout: Seconds to wait for readiness, or None
    """

    db_name: str
    data_dir: DirectoryType
    port: int
    socket_class: SocketClass
    client_options: PartialClientOptions
    logger: Callable[[Event], None]
    start_timeout: float | None = None


def start_common_options(
    partial: PartialCommonOptions, stack: ExitStack | AsyncExitStack
) -> CommonOptions:
    """
    Resolve common options against computed defaults.

    Each acquired resource registers its release on `stack` immediately, so
    closing the stack releases exactly what was acquired, in reverse order.

    Args:
        partial: The merged configuration layer
        stack: Exit stack that takes ownership of the release actions

    Returns:
        The resolved options

    Raises:
        OSError: If a directory cannot be created
    """
    log = partial.logger or default_logger

    port = partial.port
    if port is None:
        log(Event.FREE_PORT)
        port = find_free_port()

    data_dir = initialize_directory(DATA_DIR_PREFIX, partial.data_dir)
    stack.callback(cleanup_directory, data_dir)

    socket_class = start_socket_class(partial.socket_class)
    stack.callback(stop_socket_class, socket_class)

    logger.debug(
        "Resolved data directory %s and socket %s:%d",
        data_dir.path,
        socket_class_to_host(socket_class),
        port,
    )

    return CommonOptions(
        db_name=partial.db_name or DEFAULT_DB_NAME,
        data_dir=data_dir,
        port=port,
        socket_class=socket_class,
        client_options=partial.client_options,
        logger=log,
        start_timeout=partial.start_timeout,
    )

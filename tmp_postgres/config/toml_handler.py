"""
TOML Configuration Files.

This module reads configuration layers from TOML files and writes the
connection details of running instances.

Key features:
- Parse TOML files using tomllib (Python 3.11+)
- Write TOML files using tomlkit
- Convert a validated [tmp_postgres] table into a Plan layer
"""

import dataclasses
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomlkit

from tmp_postgres.config.partial import (
    Append,
    IpSocket,
    Lastoid,
    PartialClientOptions,
    PartialCommonOptions,
    PartialPostgresPlan,
    PartialProcessOptions,
    Plan,
    Replace,
    UnixSocket,
)
from tmp_postgres.config.schema import (
    CLIENT_SCHEMA,
    COMMON_SCHEMA,
    POSTGRES_SCHEMA,
    PROCESS_SCHEMA,
    ConfigField,
    ValidationError,
    validate_table,
)

if TYPE_CHECKING:
    from tmp_postgres.lifecycle import DB

SECTION = "tmp_postgres"


class TOMLError(Exception):
    """Base exception for TOML-related errors."""

    pass


class ConfigFileError(TOMLError):
    """Raised when a configuration file does not describe a valid layer."""

    pass


def read_toml(file_path: Path) -> dict[str, Any]:
    """
    Read and parse a TOML file.

    Args:
        file_path: Path to the TOML file

    Returns:
        Parsed TOML data as dictionary

    Raises:
        TOMLError: If file cannot be read or parsed
    """
    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise TOMLError(f"TOML file not found: {file_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to read TOML file {file_path}: {e}") from e


def write_toml(file_path: Path, data: dict[str, Any]) -> None:
    """
    Write data to a TOML file using tomlkit.

    Args:
        file_path: Path to the TOML file
        data: Data to write

    Raises:
        TOMLError: If file cannot be written
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w", encoding="utf-8") as f:
            tomlkit.dump(data, f)
    except OSError as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e


def _lastoid(value: Any, mode: str | None) -> Lastoid:
    return Replace(value) if mode == "replace" else Append(value)


def _process_options(
    table: dict[str, Any], schema: dict[str, ConfigField], section: str
) -> PartialProcessOptions:
    validate_table(table, schema, section)

    options = PartialProcessOptions(name=table.get("program"), cwd=table.get("cwd"))
    if "args" in table or "args_mode" in table:
        options = dataclasses.replace(
            options, cmd_line=_lastoid(table.get("args", []), table.get("args_mode"))
        )
    if "env" in table or "env_mode" in table:
        options = dataclasses.replace(
            options, env=_lastoid(table.get("env", {}), table.get("env_mode"))
        )
    return options


def _socket_choice(table: dict[str, Any]) -> IpSocket | UnixSocket | None:
    kind = table.get("socket")
    if kind is None:
        if "socket_address" in table:
            kind = "ip"
        elif "socket_directory" in table:
            kind = "unix"
        else:
            return None

    if kind == "ip":
        if "socket_directory" in table:
            raise ValidationError("socket_directory is only valid for unix sockets")
        return IpSocket(address=table.get("socket_address", IpSocket.address))

    if "socket_address" in table:
        raise ValidationError("socket_address is only valid for ip sockets")
    return UnixSocket(directory=table.get("socket_directory"))


def plan_from_dict(data: dict[str, Any]) -> Plan:
    """
    Build a configuration layer from parsed TOML data.

    Only the [tmp_postgres] table is read; a missing table is the empty
    layer.

    Args:
        data: Parsed TOML document

    Returns:
        The configuration layer

    Raises:
        ConfigFileError: If the table does not match the schema
    """
    table = data.get(SECTION, {})
    try:
        validate_table(table, COMMON_SCHEMA, SECTION)

        client = table.get("client", {})
        validate_table(client, CLIENT_SCHEMA, f"{SECTION}.client")

        common = PartialCommonOptions(
            db_name=table.get("db_name"),
            data_dir=table.get("data_dir"),
            port=table.get("port"),
            socket_class=_socket_choice(table),
            client_options=PartialClientOptions(**client),
            start_timeout=table.get("start_timeout"),
        )

        init_db = create_db = None
        if "initdb" in table:
            init_db = _process_options(
                table["initdb"], PROCESS_SCHEMA, f"{SECTION}.initdb"
            )
        if "createdb" in table:
            create_db = _process_options(
                table["createdb"], PROCESS_SCHEMA, f"{SECTION}.createdb"
            )

        postgres = PartialPostgresPlan()
        if "postgres" in table:
            postgres_table = table["postgres"]
            postgres = PartialPostgresPlan(
                options=_process_options(
                    postgres_table, POSTGRES_SCHEMA, f"{SECTION}.postgres"
                )
            )
            if "config" in postgres_table or "config_mode" in postgres_table:
                postgres = dataclasses.replace(
                    postgres,
                    config=_lastoid(
                        postgres_table.get("config", ""),
                        postgres_table.get("config_mode"),
                    ),
                )
    except ValidationError as e:
        raise ConfigFileError(str(e)) from e

    return Plan(common=common, init_db=init_db, create_db=create_db, postgres=postgres)


def load_plan(file_path: Path) -> Plan:
    """
    Read a configuration layer from a TOML file.

    Raises:
        TOMLError: If the file cannot be read or parsed
        ConfigFileError: If the file does not describe a valid layer
    """
    return plan_from_dict(read_toml(file_path))


def connection_info(db: "DB") -> dict[str, Any]:
    """Return the connection details of a running instance as a table."""
    options = db.connection_options
    info: dict[str, Any] = {
        "host": options.host,
        "port": options.port,
        "dbname": options.dbname,
        "data_dir": db.common_options.data_dir.path,
        "pid": db.postgres_process.handle.pid,
        "connection_string": db.to_connection_string(),
    }
    if options.user is not None:
        info["user"] = options.user
    return {SECTION: info}


def write_connection_info(file_path: Path, db: "DB") -> None:
    """
    Write the connection details of a running instance to a TOML file.

    Raises:
        TOMLError: If the file cannot be written
    """
    write_toml(file_path, connection_info(db))

"""
Plan Compilation.

This module turns merged configuration layers into complete, immutable
plans for the initdb, createdb and postgres invocations.

Each plan is built the same way:
1. compute a default partial plan from the resolved common options
2. merge the caller's layer on top of it
3. require every mandatory field, or raise ConfigIncomplete
"""

import os
from dataclasses import dataclass
from typing import Any

from psycopg.conninfo import make_conninfo

from tmp_postgres.config.partial import (
    PartialClientOptions,
    PartialPostgresPlan,
    PartialProcessOptions,
    Replace,
)
from tmp_postgres.events import ConfigIncomplete
from tmp_postgres.resources import (
    CommonOptions,
    listen_address_config,
    socket_class_to_host,
)

CONFIG_FILE_NAME = "postgresql.conf"

DEFAULT_CONFIG = [
    "shared_buffers = 12MB",
    "fsync = off",
    "synchronous_commit = off",
    "full_page_writes = off",
    "log_min_duration_statement = 0",
    "log_connections = on",
    "log_disconnections = on",
    "client_min_messages = ERROR",
]


@dataclass(frozen=True)
class ClientOptions:
    """Complete connection parameters for one database."""

    host: str
    port: int
    dbname: str
    user: str | None = None
    password: str | None = None
    connect_timeout: int | None = None

    def to_kwargs(self, **overrides: Any) -> dict[str, Any]:
        """Return psycopg connect() keyword arguments, unset ones omitted."""
        params = {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }
        params.update(overrides)
        return {key: value for key, value in params.items() if value is not None}

    def to_connection_string(self) -> str:
        """Return a libpq keyword/value connection string."""
        return make_conninfo(**self.to_kwargs())


@dataclass(frozen=True)
class ProcessOptions:
    """A fully specified external program invocation."""

    name: str
    cmd_line: tuple[str, ...]
    env: dict[str, str]
    cwd: str


@dataclass(frozen=True)
class PostgresPlan:
    """The postgres invocation plus the postgresql.conf text it runs with."""

    config: str
    options: ProcessOptions


def complete_client_options(partial: PartialClientOptions) -> ClientOptions | None:
    """Return complete connection parameters, or None if any is missing."""
    if partial.host is None or partial.port is None or partial.dbname is None:
        return None
    return ClientOptions(
        host=partial.host,
        port=partial.port,
        dbname=partial.dbname,
        user=partial.user,
        password=partial.password,
        connect_timeout=partial.connect_timeout,
    )


def complete_process_options(partial: PartialProcessOptions) -> ProcessOptions | None:
    """Return complete process options, or None if any field is unresolved."""
    if partial.name is None or partial.cwd is None:
        return None
    if not isinstance(partial.cmd_line, Replace) or not isinstance(
        partial.env, Replace
    ):
        return None
    return ProcessOptions(
        name=partial.name,
        cmd_line=tuple(partial.cmd_line.value),
        env=dict(partial.env.value),
        cwd=partial.cwd,
    )


def complete_postgres_plan(partial: PartialPostgresPlan) -> PostgresPlan | None:
    """
    Return a complete postgres plan, or None.

    The config text only resolves once a Replace has been merged in; an
    Append that never meets a Replace has no absolute content.
    """
    if not isinstance(partial.config, Replace):
        return None
    options = complete_process_options(partial.options)
    if options is None:
        return None
    return PostgresPlan(config=partial.config.value, options=options)


def standard_process_options() -> PartialProcessOptions:
    """Defaults every process starts from: current environment and directory."""
    return PartialProcessOptions(
        env=Replace(dict(os.environ)),
        cwd=os.getcwd(),
    )


def default_client_options(common: CommonOptions) -> PartialClientOptions:
    return PartialClientOptions(
        host=socket_class_to_host(common.socket_class),
        port=common.port,
        dbname=common.db_name,
    )


def default_init_db_options(common: CommonOptions) -> PartialProcessOptions:
    return PartialProcessOptions(
        name="initdb",
        cmd_line=Replace(("--nosync", f"--pgdata={common.data_dir.path}")),
    ).merge(standard_process_options())


def default_create_db_options(common: CommonOptions) -> PartialProcessOptions:
    return PartialProcessOptions(
        name="createdb",
        cmd_line=Replace(
            (
                "-h",
                socket_class_to_host(common.socket_class),
                "-p",
                str(common.port),
                common.db_name,
            )
        ),
    ).merge(standard_process_options())


def default_postgres_plan(common: CommonOptions) -> PartialPostgresPlan:
    config_lines = DEFAULT_CONFIG + listen_address_config(common.socket_class)
    return PartialPostgresPlan(
        config=Replace("".join(f"{line}\n" for line in config_lines)),
        options=PartialProcessOptions(
            name="postgres",
            cmd_line=Replace(("-D", common.data_dir.path, "-p", str(common.port))),
        ).merge(standard_process_options()),
    )


def resolve_client_options(common: CommonOptions) -> ClientOptions:
    """
    Merge the caller's connection overrides over the computed ones.

    Raises:
        ConfigIncomplete: If host, port or dbname is missing
    """
    options = complete_client_options(
        common.client_options.merge(default_client_options(common))
    )
    if options is None:
        raise ConfigIncomplete("client")
    return options


def resolve_init_db_options(
    common: CommonOptions, user_options: PartialProcessOptions
) -> ProcessOptions:
    """
    Build the initdb invocation.

    Raises:
        ConfigIncomplete: If a field is still unresolved after merging
    """
    options = complete_process_options(
        user_options.merge(default_init_db_options(common))
    )
    if options is None:
        raise ConfigIncomplete("initdb")
    return options


def resolve_create_db_options(
    common: CommonOptions, user_options: PartialProcessOptions
) -> ProcessOptions:
    """
    Build the createdb invocation.

    Raises:
        ConfigIncomplete: If a field is still unresolved after merging
    """
    options = complete_process_options(
        user_options.merge(default_create_db_options(common))
    )
    if options is None:
        raise ConfigIncomplete("createdb")
    return options


def resolve_postgres_plan(
    common: CommonOptions, user_plan: PartialPostgresPlan
) -> PostgresPlan:
    """
    Build the postgres invocation and its config text.

    Raises:
        ConfigIncomplete: If the config text or a process field is unresolved
    """
    plan = complete_postgres_plan(user_plan.merge(default_postgres_plan(common)))
    if plan is None:
        raise ConfigIncomplete("postgres")
    return plan


def write_config(common: CommonOptions, plan: PostgresPlan) -> str:
    """Write the plan's config text into the data directory, return its path."""
    path = os.path.join(common.data_dir.path, CONFIG_FILE_NAME)
    with open(path, "w", encoding="utf-8") as f:
        f.write(plan.config)
    return path

"""
Instance Lifecycle Management.

This module provides the caller-facing lifecycle of one throwaway database.

Key features:
- start/start_with: provision, initdb, postgres, createdb as one operation
- stop/stop_postgres/restart on the returned DB handle
- with_plan/with_db/temporary_db: scoped use with guaranteed teardown

Start failures come back as StartError values. Every resource acquired
before the failure has been released by the time the error is returned.
"""

import contextlib
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import TypeVar

from tmp_postgres.config.partial import PartialProcessOptions, Plan
from tmp_postgres.events import CreateDbFailed, Event, InitFailed, StartError
from tmp_postgres.plan import (
    ClientOptions,
    PostgresPlan,
    ProcessOptions,
    resolve_create_db_options,
    resolve_init_db_options,
    resolve_postgres_plan,
    write_config,
)
from tmp_postgres.postgres import (
    PostgresProcess,
    start_postgres,
    stop_postgres_process,
    terminate_connections,
)
from tmp_postgres.process import run_to_completion
from tmp_postgres.resources import CommonOptions, start_common_options

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DB:
    """
    A running throwaway database and everything it owns.

    Attributes:
        common_options: Resolved configuration
        postgres_process: The running server
        init_db_options: The initdb invocation that ran, if any
        create_db_options: The createdb invocation that ran, if any
        postgres_plan: The plan the server runs with
        resources: Release actions for the data and socket directories
    """

    common_options: CommonOptions
    postgres_process: PostgresProcess
    init_db_options: ProcessOptions | None
    create_db_options: ProcessOptions | None
    postgres_plan: PostgresPlan
    resources: AsyncExitStack = field(repr=False, compare=False)

    @property
    def connection_options(self) -> ClientOptions:
        return self.postgres_process.options

    def to_connection_string(self) -> str:
        """Return a libpq connection string for the managed database."""
        return self.connection_options.to_connection_string()


def default_plan() -> Plan:
    """The library defaults: run initdb and createdb with computed options."""
    return Plan(
        init_db=PartialProcessOptions(),
        create_db=PartialProcessOptions(),
    )


def _with_defaults(plan: Plan | None) -> Plan:
    return (plan or Plan()).merge(default_plan())


async def _run_init_db(
    common: CommonOptions, user_options: PartialProcessOptions | None
) -> ProcessOptions | None:
    if user_options is None:
        return None

    options = resolve_init_db_options(common, user_options)
    common.logger(Event.INIT_DB)
    exit_code = await run_to_completion(options)
    if exit_code != 0:
        raise InitFailed(exit_code)
    return options


async def _run_create_db(
    common: CommonOptions, user_options: PartialProcessOptions | None
) -> ProcessOptions | None:
    if user_options is None:
        return None

    options = resolve_create_db_options(common, user_options)
    common.logger(Event.CREATE_DB)
    exit_code = await run_to_completion(options)
    if exit_code != 0:
        raise CreateDbFailed(list(options.cmd_line), exit_code)
    return options


async def start_with(plan: Plan) -> DB | StartError:
    """
    Start a database exactly as `plan` describes.

    No library defaults are merged in here: initdb and createdb only run
    when the plan requests them. Use `start` for the usual defaults.

    Args:
        plan: The configuration layer

    Returns:
        The running DB, or the StartError that stopped it
    """
    async with AsyncExitStack() as stack:
        common = start_common_options(plan.common, stack)
        try:
            init_db_options = await _run_init_db(common, plan.init_db)

            postgres_plan = resolve_postgres_plan(common, plan.postgres)
            common.logger(Event.WRITE_CONFIG)
            write_config(common, postgres_plan)

            postgres_process = await start_postgres(common, postgres_plan)
            try:
                create_db_options = await _run_create_db(common, plan.create_db)
            except BaseException:
                await stop_postgres_process(postgres_process)
                raise
        except StartError as error:
            logger.debug("Start failed, releasing resources: %s", error)
            return error

        resources = stack.pop_all()

    common.logger(Event.FINISHED)
    return DB(
        common_options=common,
        postgres_process=postgres_process,
        init_db_options=init_db_options,
        create_db_options=create_db_options,
        postgres_plan=postgres_plan,
        resources=resources,
    )


async def start(plan: Plan | None = None) -> DB | StartError:
    """
    Start a database, layering `plan` over the library defaults.

    Args:
        plan: Optional overrides; None or Plan() means all defaults

    Returns:
        The running DB, or the StartError that stopped it
    """
    return await start_with(_with_defaults(plan))


async def stop_postgres(db: DB) -> int:
    """Stop only the server, keeping the directories. Returns the exit code."""
    return await stop_postgres_process(db.postgres_process)


async def stop(db: DB) -> int:
    """
    Stop the server, then release the socket and data directories.

    Calling it again returns the same exit code and releases nothing twice.

    Returns:
        The server's exit code
    """
    exit_code = await stop_postgres(db)
    await db.resources.aclose()
    return exit_code


async def restart(db: DB) -> DB | StartError:
    """
    Stop the server and start a fresh one with the same configuration.

    The returned DB shares the directories of `db` and replaces it; stop the
    returned handle, not the old one.

    Returns:
        A new DB with a new server process, or the StartError
    """
    await stop_postgres(db)
    try:
        postgres_process = await start_postgres(db.common_options, db.postgres_plan)
    except StartError as error:
        return error
    return dataclasses.replace(db, postgres_process=postgres_process)


async def terminate_db_connections(db: DB) -> None:
    """Force every client connection to the managed database to close."""
    await terminate_connections(db.postgres_process)


async def with_plan(plan: Plan, action: Callable[[DB], Awaitable[T]]) -> T | StartError:
    """
    Start a database from `plan`, run `action` on it, then tear it down.

    Teardown happens whether or not `action` raises.

    Returns:
        The action's result, or the StartError
    """
    result = await start_with(plan)
    if isinstance(result, StartError):
        return result

    try:
        return await action(result)
    finally:
        await stop(result)


async def with_db(
    action: Callable[[DB], Awaitable[T]], plan: Plan | None = None
) -> T | StartError:
    """Like `with_plan`, with `plan` layered over the library defaults."""
    return await with_plan(_with_defaults(plan), action)


@contextlib.asynccontextmanager
async def temporary_db(plan: Plan | None = None) -> AsyncIterator[DB]:
    """
    Async context manager around `start` and `stop`.

    Example:
        async with temporary_db() as db:
            conn = await psycopg.AsyncConnection.connect(db.to_connection_string())

    Raises:
        StartError: If the database could not be started
    """
    result = await start(plan)
    if isinstance(result, StartError):
        raise result

    try:
        yield result
    finally:
        await stop(result)

"""
postgres Process Lifecycle.

This module starts the postgres server from a resolved plan, decides whether
it came up, and shuts it down.

Key features:
- Readiness race: connection probe versus exit-status poll
- Optional start timeout around the race
- Losing race branch is always cancelled and awaited
- Best-effort termination of client connections before shutdown
"""

import asyncio
import logging
from dataclasses import dataclass

import psycopg

from tmp_postgres.events import (
    Event,
    ServerDisappeared,
    ServerStartFailed,
    ServerStartTimeout,
)
from tmp_postgres.plan import (
    ClientOptions,
    PostgresPlan,
    resolve_client_options,
)
from tmp_postgres.process import ProcessHandle, spawn
from tmp_postgres.resources import CommonOptions

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
BOOTSTRAP_DB = "postgres"
TERMINATE_CONNECTIONS_QUERY = (
    "select pg_terminate_backend(pid) from pg_stat_activity "
    "where datname = %s and pid <> pg_backend_pid()"
)


@dataclass
class PostgresProcess:
    """
    A running postgres server.

    Attributes:
        handle: The postgres process
        options: Connection parameters for the managed database
        plan: The plan the process was started from
    """

    handle: ProcessHandle
    options: ClientOptions
    plan: PostgresPlan


async def wait_for_db(options: ClientOptions, interval: float = POLL_INTERVAL) -> None:
    """Poll until a connection to the bootstrap database succeeds."""
    while True:
        try:
            conn = await psycopg.AsyncConnection.connect(
                **options.to_kwargs(dbname=BOOTSTRAP_DB)
            )
        except psycopg.OperationalError:
            await asyncio.sleep(interval)
            continue

        await conn.close()
        return


async def check_for_crash(handle: ProcessHandle, interval: float = POLL_INTERVAL) -> None:
    """
    Poll the process until it exits, then fail.

    Raises:
        ServerStartFailed: With the exit code once the process has exited
        ServerDisappeared: If the process vanished without an exit code
    """
    while True:
        exit_code = handle.poll()
        if exit_code is not None:
            raise ServerStartFailed(exit_code)

        if not handle.exists():
            # The pid can vanish a moment before asyncio records the code.
            await asyncio.sleep(interval)
            exit_code = handle.poll()
            if exit_code is None:
                raise ServerDisappeared()
            raise ServerStartFailed(exit_code)

        await asyncio.sleep(interval)


async def wait_until_ready(
    handle: ProcessHandle,
    options: ClientOptions,
    timeout: float | None = None,
    interval: float = POLL_INTERVAL,
) -> None:
    """
    Race readiness against a crash.

    Args:
        handle: The postgres process
        options: Connection parameters used by the probe
        timeout: Seconds before giving up, None to wait forever
        interval: Seconds between polls in both branches

    Raises:
        ServerStartFailed: If the process exited first
        ServerDisappeared: If the process could no longer be observed
        ServerStartTimeout: If neither branch finished within `timeout`
    """
    ready = asyncio.create_task(wait_for_db(options, interval))
    crashed = asyncio.create_task(check_for_crash(handle, interval))

    try:
        done, _ = await asyncio.wait(
            {ready, crashed}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (ready, crashed):
            task.cancel()
        await asyncio.gather(ready, crashed, return_exceptions=True)

    # A dead process wins even if the probe also finished.
    if crashed in done:
        crashed.result()
    if ready in done:
        ready.result()
        return

    raise ServerStartTimeout(timeout)


async def start_postgres(common: CommonOptions, plan: PostgresPlan) -> PostgresProcess:
    """
    Spawn postgres and wait until it accepts connections.

    The process is stopped again before any error propagates.

    Args:
        common: Resolved common options
        plan: Resolved postgres plan

    Returns:
        The ready server

    Raises:
        ConfigIncomplete: If the connection parameters do not resolve
        ServerStartFailed: If postgres exited during startup
        ServerDisappeared: If postgres vanished during startup
        ServerStartTimeout: If the start timeout elapsed
    """
    options = resolve_client_options(common)

    common.logger(Event.START_POSTGRES)
    handle = await spawn(plan.options)
    process = PostgresProcess(handle=handle, options=options, plan=plan)

    try:
        common.logger(Event.WAIT_FOR_DB)
        await wait_until_ready(handle, options, timeout=common.start_timeout)
    except BaseException:
        await stop_postgres_process(process)
        raise

    logger.debug("postgres %d is ready on %s", handle.pid, options.host)
    return process


async def terminate_connections(process: PostgresProcess) -> None:
    """
    Force every client connection to the managed database to close.

    Best effort: connection and query failures are logged and ignored.
    """
    dbname = process.options.dbname
    try:
        async with await psycopg.AsyncConnection.connect(
            **process.options.to_kwargs(dbname=BOOTSTRAP_DB), autocommit=True
        ) as conn:
            await conn.execute(TERMINATE_CONNECTIONS_QUERY, (dbname,))
    except psycopg.Error as e:
        logger.debug("Could not terminate connections to %s: %s", dbname, e)


async def stop_postgres_process(process: PostgresProcess) -> int:
    """
    Stop postgres and wait for it to exit.

    Connections are terminated first, then the process is interrupted. A
    process that already exited is only waited on, so calling this twice
    returns the same exit code.

    Returns:
        The exit code
    """
    if process.handle.poll() is None:
        await terminate_connections(process)
        process.handle.interrupt()

    return await process.handle.wait()

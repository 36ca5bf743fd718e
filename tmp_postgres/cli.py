"""
tmp-postgres CLI - run a throwaway PostgreSQL instance from the shell.

Usage:
    tmp-postgres [options]                 Start, print the connection string,
                                           stop on Ctrl-C or SIGTERM
    tmp-postgres [options] -- CMD [ARGS]   Start, run CMD against the
                                           instance, stop, exit with CMD's code

Command-line flags override the --config file, which overrides the defaults.
"""

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path

from tmp_postgres.config import (
    IpSocket,
    PartialCommonOptions,
    Plan,
    TOMLError,
    UnixSocket,
    load_plan,
    write_connection_info,
)
from tmp_postgres.events import StartError
from tmp_postgres.lifecycle import DB, with_db

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="tmp-postgres",
        description="Start a throwaway PostgreSQL instance",
    )

    parser.add_argument("--config", type=Path, help="TOML configuration file")
    parser.add_argument("--db-name", help="Database to create (default: test)")
    parser.add_argument("--port", type=int, help="Port (default: a free one)")
    parser.add_argument("--data-dir", help="Data directory (default: temporary)")

    sockets = parser.add_mutually_exclusive_group()
    sockets.add_argument(
        "--ip", action="store_true", help="Listen on 127.0.0.1 instead of a socket"
    )
    sockets.add_argument(
        "--unix", action="store_true", help="Listen on a temporary Unix socket"
    )

    parser.add_argument(
        "--timeout", type=float, help="Seconds to wait for postgres to be ready"
    )
    parser.add_argument(
        "--info-file", type=Path, help="Write connection details to this TOML file"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "command", nargs=argparse.REMAINDER, help="Command to run against the instance"
    )

    return parser


def plan_from_args(args: argparse.Namespace) -> Plan:
    """Build the configuration layer given on the command line."""
    socket_class = None
    if args.ip:
        socket_class = IpSocket()
    elif args.unix:
        socket_class = UnixSocket()

    plan = Plan(
        common=PartialCommonOptions(
            db_name=args.db_name,
            data_dir=args.data_dir,
            port=args.port,
            socket_class=socket_class,
            start_timeout=args.timeout,
        )
    )
    if args.config is not None:
        plan = plan.merge(load_plan(args.config))
    return plan


def connection_env(db: DB) -> dict[str, str]:
    """Return libpq environment variables pointing at `db`."""
    options = db.connection_options
    env = {
        "PGHOST": options.host,
        "PGPORT": str(options.port),
        "PGDATABASE": options.dbname,
        "DATABASE_URL": db.to_connection_string(),
    }
    if options.user is not None:
        env["PGUSER"] = options.user
    if options.password is not None:
        env["PGPASSWORD"] = options.password
    return env


async def _wait_for_shutdown() -> None:
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops; Ctrl-C still raises there.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stopped.set)
    await stopped.wait()


async def _serve(db: DB, args: argparse.Namespace) -> int:
    print(db.to_connection_string(), flush=True)
    if args.info_file is not None:
        write_connection_info(args.info_file, db)

    command = args.command
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        await _wait_for_shutdown()
        return 0

    process = await asyncio.create_subprocess_exec(
        *command, env={**os.environ, **connection_env(db)}
    )
    return await process.wait()


async def run_async(args: argparse.Namespace) -> int:
    """Start the instance, serve it, and stop it again."""
    result = await with_db(lambda db: _serve(db, args), plan_from_args(args))
    if isinstance(result, StartError):
        print(f"Error: {result}", file=sys.stderr)
        return 1
    return result


def main(argv: list[str] | None = None) -> int:
    """Main entry point for tmp-postgres CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        return asyncio.run(run_async(args))
    except TOMLError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())

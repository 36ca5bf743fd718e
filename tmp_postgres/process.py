"""
Process Spawning.

This module wraps asyncio subprocesses behind the small capability set the
lifecycle needs: spawn, poll, interrupt and wait.

Platform notes:
- POSIX: interrupt() delivers SIGINT, which postgres treats as fast shutdown
- Elsewhere: interrupt() falls back to terminate(), signals are unsupported
"""

import asyncio
import contextlib
import logging
import os
import signal

import testing.postgresql

from tmp_postgres.plan import ProcessOptions

logger = logging.getLogger(__name__)


def resolve_program(name: str) -> str:
    """
    Locate a program by bare name.

    PostgreSQL binaries often live outside PATH (for example
    /usr/lib/postgresql/<version>/bin), so bare names are looked up in the
    usual installation prefixes as well. Paths are returned unchanged.

    Args:
        name: Program path or bare name

    Returns:
        Path to execute
    """
    if os.path.dirname(name):
        return name

    try:
        return testing.postgresql.find_program(name, ["bin"])
    except RuntimeError:
        logger.debug("Could not locate %s, leaving lookup to the OS", name)
        return name


class ProcessHandle:
    """A spawned child process."""

    def __init__(self, process: asyncio.subprocess.Process, options: ProcessOptions):
        self._process = process
        self.options = options

    @property
    def pid(self) -> int:
        return self._process.pid

    def poll(self) -> int | None:
        """Return the exit code if the process has been reaped, else None."""
        return self._process.returncode

    def exists(self) -> bool:
        """
        Check whether the process can still be observed.

        Returns False once it has exited, or when the pid is gone without
        asyncio having recorded an exit code.
        """
        if self.poll() is not None:
            return False
        if os.name != "posix":
            return True

        try:
            os.kill(self.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def interrupt(self) -> None:
        """Ask the process to shut down. No-op once it has exited."""
        if self.poll() is not None:
            return

        with contextlib.suppress(ProcessLookupError):
            if os.name == "posix":
                self._process.send_signal(signal.SIGINT)
            else:
                self._process.terminate()

    def kill(self) -> None:
        """Kill the process. No-op once it has exited."""
        if self.poll() is not None:
            return

        with contextlib.suppress(ProcessLookupError):
            self._process.kill()

    async def wait(self) -> int:
        """Wait for exit and return the exit code. Safe to call repeatedly."""
        return await self._process.wait()

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, name={self.options.name!r})"


async def spawn(options: ProcessOptions) -> ProcessHandle:
    """
    Start a program described by `options`.

    Args:
        options: Complete process options

    Returns:
        Handle to the running process

    Raises:
        OSError: If the program cannot be executed
    """
    program = resolve_program(options.name)
    logger.debug("Spawning %s %s", program, " ".join(options.cmd_line))

    process = await asyncio.create_subprocess_exec(
        program,
        *options.cmd_line,
        env=options.env,
        cwd=options.cwd,
    )
    return ProcessHandle(process, options)


async def run_to_completion(options: ProcessOptions) -> int:
    """
    Run a program and wait for it to exit.

    The child is killed if the waiting task is cancelled.

    Returns:
        The exit code
    """
    handle = await spawn(options)
    try:
        return await handle.wait()
    except asyncio.CancelledError:
        handle.kill()
        await asyncio.shield(handle.wait())
        raise

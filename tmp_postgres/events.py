"""
Lifecycle Events and Start Errors.

This module defines what the lifecycle reports to callers:
- Event: phase markers handed to the configured logger callback
- StartError: the tagged failures that `start` returns instead of a handle
"""

import logging
from enum import Enum

_event_logger = logging.getLogger("tmp_postgres.events")


class Event(Enum):
    """Phase markers emitted, in order, while an instance starts."""

    FREE_PORT = "free_port"
    INIT_DB = "init_db"
    WRITE_CONFIG = "write_config"
    START_POSTGRES = "start_postgres"
    WAIT_FOR_DB = "wait_for_db"
    CREATE_DB = "create_db"
    FINISHED = "finished"


def default_logger(event: Event) -> None:
    """Logger callback used when the configuration does not provide one."""
    _event_logger.debug("tmp-postgres event: %s", event.name)


class StartError(Exception):
    """Base exception for everything that can make a start fail."""

    def __eq__(self, other):
        return type(self) is type(other) and self.args == other.args

    def __hash__(self):
        return hash((type(self), self.args))


class InitFailed(StartError):
    """The initdb process exited with a non-zero code."""

    def __init__(self, exit_code: int):
        super().__init__(exit_code)
        self.exit_code = exit_code

    def __str__(self) -> str:
        return f"initdb failed with exit code {self.exit_code}"


class CreateDbFailed(StartError):
    """The createdb process exited with a non-zero code."""

    def __init__(self, cmd_line: list[str], exit_code: int):
        super().__init__(tuple(cmd_line), exit_code)
        self.cmd_line = list(cmd_line)
        self.exit_code = exit_code

    def __str__(self) -> str:
        return (
            f"createdb {' '.join(self.cmd_line)} failed "
            f"with exit code {self.exit_code}"
        )


class ServerStartFailed(StartError):
    """The postgres process exited before it accepted connections."""

    def __init__(self, exit_code: int):
        super().__init__(exit_code)
        self.exit_code = exit_code

    def __str__(self) -> str:
        return f"postgres exited during startup with exit code {self.exit_code}"


class ServerDisappeared(StartError):
    """The postgres process is gone and its exit code cannot be observed."""

    def __str__(self) -> str:
        return "postgres process disappeared without an exit code"


class ServerStartTimeout(StartError):
    """postgres neither became ready nor exited within the start timeout."""

    def __init__(self, seconds: float):
        super().__init__(seconds)
        self.seconds = seconds

    def __str__(self) -> str:
        return f"postgres was not ready after {self.seconds}s"


class ConfigIncomplete(StartError):
    """
    A plan was missing a mandatory field after all layers were merged.

    Attributes:
        which: One of "initdb", "createdb", "postgres" or "client"
    """

    PLANS = ("initdb", "createdb", "postgres", "client")

    def __init__(self, which: str):
        if which not in self.PLANS:
            raise ValueError(f"Unknown plan {which!r}, expected one of {self.PLANS}")
        super().__init__(which)
        self.which = which

    def __str__(self) -> str:
        return f"{self.which} options are incomplete"

"""
tmp_postgres - throwaway PostgreSQL instances for test suites.

This is the main package that exports the public API:

    result = await tmp_postgres.start()
    if isinstance(result, tmp_postgres.StartError):
        ...
    await tmp_postgres.stop(result)
"""

__version__ = "0.1.0"

from tmp_postgres.config import (
    Append,
    IpSocket,
    PartialClientOptions,
    PartialCommonOptions,
    PartialPostgresPlan,
    PartialProcessOptions,
    Plan,
    Replace,
    UnixSocket,
    load_plan,
)
from tmp_postgres.events import (
    ConfigIncomplete,
    CreateDbFailed,
    Event,
    InitFailed,
    ServerDisappeared,
    ServerStartFailed,
    ServerStartTimeout,
    StartError,
)
from tmp_postgres.lifecycle import (
    DB,
    default_plan,
    restart,
    start,
    start_with,
    stop,
    stop_postgres,
    temporary_db,
    terminate_db_connections,
    with_db,
    with_plan,
)

__all__ = [
    "__version__",
    "Append",
    "ConfigIncomplete",
    "CreateDbFailed",
    "DB",
    "Event",
    "InitFailed",
    "IpSocket",
    "PartialClientOptions",
    "PartialCommonOptions",
    "PartialPostgresPlan",
    "PartialProcessOptions",
    "Plan",
    "Replace",
    "ServerDisappeared",
    "ServerStartFailed",
    "ServerStartTimeout",
    "StartError",
    "UnixSocket",
    "default_plan",
    "load_plan",
    "restart",
    "start",
    "start_with",
    "stop",
    "stop_postgres",
    "temporary_db",
    "terminate_db_connections",
    "with_db",
    "with_plan",
]

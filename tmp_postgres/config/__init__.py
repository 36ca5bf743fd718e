"""
tmp_postgres Configuration - layered, all-optional configuration records.

This module provides:
- Partial records that merge left-biased (`Plan`, `PartialCommonOptions`, ...)
- Append/Replace values for text, argument lists and environments
- TOML configuration files that load into a `Plan` layer

Example usage:
    from tmp_postgres.config import Append, PartialCommonOptions, PartialPostgresPlan, Plan

    plan = Plan(
        common=PartialCommonOptions(db_name="example"),
        postgres=PartialPostgresPlan(config=Append("work_mem = 8MB")),
    )
    merged = plan.merge(load_plan(Path("tmp_postgres.toml")))
"""

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
    merge_all,
    merge_lastoid,
)
from tmp_postgres.config.toml_handler import (
    ConfigFileError,
    TOMLError,
    load_plan,
    plan_from_dict,
    write_connection_info,
)

__all__ = [
    "Append",
    "ConfigFileError",
    "IpSocket",
    "Lastoid",
    "PartialClientOptions",
    "PartialCommonOptions",
    "PartialPostgresPlan",
    "PartialProcessOptions",
    "Plan",
    "Replace",
    "TOMLError",
    "UnixSocket",
    "load_plan",
    "merge_all",
    "merge_lastoid",
    "plan_from_dict",
    "write_connection_info",
]

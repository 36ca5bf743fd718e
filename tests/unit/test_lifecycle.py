"""
Tests for Instance Lifecycle Management.

This test suite covers:
1. Full start sequence and event order
2. initdb / createdb / postgres failures and cleanup
3. stop, stop_postgres and restart
4. with_plan, with_db and temporary_db teardown
"""

import sys
from unittest.mock import AsyncMock, patch

import pytest

from conftest import exiting_process, leftovers
from tmp_postgres.config.partial import (
    Append,
    PartialCommonOptions,
    PartialPostgresPlan,
    PartialProcessOptions,
    Plan,
)
from tmp_postgres.events import (
    ConfigIncomplete,
    CreateDbFailed,
    Event,
    InitFailed,
    ServerStartFailed,
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
    with_db,
    with_plan,
)
from tmp_postgres.postgres import stop_postgres_process


def fake_plan(fake_server, create_db=None, **common) -> Plan:
    """A plan whose every process is a stand-in that succeeds."""
    return Plan(
        common=PartialCommonOptions(**common),
        init_db=exiting_process(0),
        create_db=create_db or exiting_process(0),
        postgres=fake_server,
    )


def appending_create_db(script: str) -> PartialProcessOptions:
    """
    A createdb stand-in that keeps the computed arguments.

    The computed "-h host -p port dbname" follow the script and end up in
    the stand-in's sys.argv.
    """
    return PartialProcessOptions(
        name=sys.executable, cmd_line=Append(("-c", script))
    )


class TestStart:
    """Test the start sequence."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, temp_root, fake_server):
        events = []
        db = await start_with(fake_plan(fake_server, logger=events.append))
        assert isinstance(db, DB)
        try:
            assert events == [
                Event.FREE_PORT,
                Event.INIT_DB,
                Event.WRITE_CONFIG,
                Event.START_POSTGRES,
                Event.WAIT_FOR_DB,
                Event.CREATE_DB,
                Event.FINISHED,
            ]
            assert db.common_options.db_name == "test"
            assert 1024 <= db.common_options.port <= 65535
            assert db.connection_options.dbname == "test"
            assert db.postgres_process.handle.poll() is None
            assert db.init_db_options is not None
            assert db.create_db_options is not None
            assert "dbname=test" in db.to_connection_string()
        finally:
            assert await stop(db) == 0
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_config_file_written(self, temp_root, fake_server):
        plan = Plan(
            postgres=PartialPostgresPlan(config=Append("work_mem = 8MB"))
        ).merge(fake_plan(fake_server))
        db = await start_with(plan)
        try:
            path = f"{db.common_options.data_dir.path}/postgresql.conf"
            with open(path, encoding="utf-8") as f:
                text = f.read()
            assert text == db.postgres_plan.config
            assert text.startswith("work_mem = 8MB\n")
        finally:
            await stop(db)

    @pytest.mark.asyncio
    async def test_steps_not_requested_do_not_run(self, temp_root, fake_server):
        events = []
        db = await start_with(
            Plan(
                common=PartialCommonOptions(logger=events.append),
                postgres=fake_server,
            )
        )
        try:
            assert db.init_db_options is None
            assert db.create_db_options is None
            assert Event.INIT_DB not in events
            assert Event.CREATE_DB not in events
        finally:
            await stop(db)

    @pytest.mark.asyncio
    async def test_init_failure(self, temp_root, fake_server):
        """initdb exiting 1 never spawns postgres and releases everything."""
        plan = Plan(init_db=exiting_process(1)).merge(fake_plan(fake_server))
        with patch(
            "tmp_postgres.lifecycle.start_postgres", new=AsyncMock()
        ) as start_postgres:
            result = await start_with(plan)

        assert result == InitFailed(1)
        assert result.exit_code == 1
        start_postgres.assert_not_called()
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_create_db_failure(self, temp_root, fake_server):
        """createdb failing stops the server and reports its arguments."""
        plan = fake_plan(
            fake_server,
            create_db=appending_create_db("import sys; sys.exit(2)"),
            db_name="example",
        )
        spy = AsyncMock(wraps=stop_postgres_process)
        with patch("tmp_postgres.lifecycle.stop_postgres_process", new=spy):
            result = await start_with(plan)

        assert isinstance(result, CreateDbFailed)
        assert result.exit_code == 2
        assert result.cmd_line[:2] == ["-c", "import sys; sys.exit(2)"]
        assert result.cmd_line[-1] == "example"
        spy.assert_awaited_once()
        assert spy.await_args.args[0].handle.poll() is not None
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_server_crash(self, temp_root):
        plan = Plan(
            init_db=exiting_process(0),
            postgres=PartialPostgresPlan(options=exiting_process(4)),
        )
        result = await start_with(plan)
        assert result == ServerStartFailed(4)
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_incomplete_postgres_plan(self, temp_root):
        with patch(
            "tmp_postgres.lifecycle.resolve_postgres_plan",
            side_effect=ConfigIncomplete("postgres"),
        ):
            result = await start_with(Plan(init_db=exiting_process(0)))
        assert result == ConfigIncomplete("postgres")
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_unexpected_error_still_releases(self, temp_root):
        """Errors outside the StartError family propagate after cleanup."""
        with patch(
            "tmp_postgres.lifecycle.run_to_completion",
            new=AsyncMock(side_effect=FileNotFoundError("initdb")),
        ):
            with pytest.raises(FileNotFoundError):
                await start_with(Plan(init_db=exiting_process(0)))
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_start_merges_defaults(self, temp_root, fake_server):
        """start() keeps caller choices and still runs both steps."""
        db = await start(fake_plan(fake_server, db_name="example"))
        try:
            assert db.common_options.db_name == "example"
            assert db.init_db_options.name == sys.executable
            assert db.create_db_options.name == sys.executable
        finally:
            await stop(db)

    def test_default_plan(self):
        plan = default_plan()
        assert plan.init_db == PartialProcessOptions()
        assert plan.create_db == PartialProcessOptions()
        assert plan.common == PartialCommonOptions()


class TestStopAndRestart:
    """Test stop, stop_postgres and restart."""

    @pytest.mark.asyncio
    async def test_stop_twice(self, temp_root, fake_server):
        db = await start_with(fake_plan(fake_server))
        first = await stop(db)
        second = await stop(db)
        assert first == second == 0
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_stop_postgres_keeps_directories(self, temp_root, fake_server):
        db = await start_with(fake_plan(fake_server))
        assert await stop_postgres(db) == 0
        assert leftovers(temp_root) != []
        await stop(db)
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_restart_preserves_configuration(self, temp_root, fake_server):
        db = await start_with(fake_plan(fake_server, db_name="example"))
        old_handle = db.postgres_process.handle

        restarted = await restart(db)
        try:
            assert isinstance(restarted, DB)
            assert restarted.common_options == db.common_options
            assert restarted.postgres_plan == db.postgres_plan
            assert restarted.connection_options == db.connection_options
            new_handle = restarted.postgres_process.handle
            assert new_handle is not old_handle
            assert new_handle.pid != old_handle.pid
            assert old_handle.poll() == 0
            assert new_handle.poll() is None
        finally:
            await stop(restarted)
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_restart_failure(self, temp_root, fake_server):
        db = await start_with(fake_plan(fake_server))
        with patch(
            "tmp_postgres.lifecycle.start_postgres",
            new=AsyncMock(side_effect=ServerStartFailed(1)),
        ):
            result = await restart(db)
        assert result == ServerStartFailed(1)
        await stop(db)
        assert leftovers(temp_root) == []


class TestScopedUse:
    """Test with_plan, with_db and temporary_db."""

    @pytest.mark.asyncio
    async def test_with_plan_returns_action_result(self, temp_root, fake_server):
        async def action(db):
            return db.common_options.db_name

        assert await with_plan(fake_plan(fake_server), action) == "test"
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_with_plan_tears_down_on_error(self, temp_root, fake_server):
        async def action(db):
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await with_plan(fake_plan(fake_server), action)
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_with_plan_start_error(self, temp_root, fake_server):
        action = AsyncMock()
        plan = Plan(init_db=exiting_process(1)).merge(fake_plan(fake_server))
        assert await with_plan(plan, action) == InitFailed(1)
        action.assert_not_called()

    @pytest.mark.asyncio
    async def test_with_db(self, temp_root, fake_server):
        async def action(db):
            return db.create_db_options.cmd_line[-1]

        plan = fake_plan(
            fake_server, create_db=appending_create_db("pass"), db_name="example"
        )
        assert await with_db(action, plan) == "example"
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_temporary_db(self, temp_root, fake_server):
        async with temporary_db(fake_plan(fake_server)) as db:
            handle = db.postgres_process.handle
            assert handle.poll() is None
        assert handle.poll() == 0
        assert leftovers(temp_root) == []

    @pytest.mark.asyncio
    async def test_temporary_db_raises_start_error(self, temp_root, fake_server):
        plan = Plan(init_db=exiting_process(5)).merge(fake_plan(fake_server))
        with pytest.raises(StartError) as exc_info:
            async with temporary_db(plan):
                pass
        assert exc_info.value == InitFailed(5)
        assert leftovers(temp_root) == []

"""
Shared fixtures for the unit tests.

The PostgreSQL binaries are replaced by small Python programs run with
sys.executable, so process handling is exercised for real without needing
a database installation.
"""

import asyncio
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from tmp_postgres.config.partial import (
    PartialPostgresPlan,
    PartialProcessOptions,
    Replace,
)

# Behaves like postgres for the lifecycle: becomes "ready" by creating the
# marker file, shuts down cleanly with exit code 0 on SIGINT.
FAKE_SERVER = """
import pathlib, signal, sys, time
signal.signal(signal.SIGINT, lambda *_: sys.exit(0))
pathlib.Path(sys.argv[1]).touch()
time.sleep(60)
"""

# Never becomes ready and never exits on its own.
HUNG_SERVER = """
import signal, sys, time
signal.signal(signal.SIGINT, lambda *_: sys.exit(0))
time.sleep(60)
"""


def python_process(script: str, *args: str) -> PartialProcessOptions:
    """Process options running `script` with the current interpreter."""
    return PartialProcessOptions(
        name=sys.executable, cmd_line=Replace(("-c", script, *args))
    )


def exiting_process(exit_code: int) -> PartialProcessOptions:
    return python_process(f"import sys; sys.exit({exit_code})")


@pytest.fixture
def temp_root(tmp_path, monkeypatch):
    """Make every temporary directory land under one inspectable root."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def ready_marker(tmp_path):
    return tmp_path / "ready"


@pytest.fixture
def fake_server(ready_marker):
    """
    A postgres plan layer running FAKE_SERVER, with the readiness probe
    patched to wait for the server's marker file instead of connecting.
    """

    async def wait_for_marker(options, interval=0.1):
        while not ready_marker.exists():
            await asyncio.sleep(0.01)
        # Consumed so a restarted server has to create it again.
        ready_marker.unlink()

    plan = PartialPostgresPlan(
        options=python_process(FAKE_SERVER, str(ready_marker))
    )
    with patch("tmp_postgres.postgres.wait_for_db", new=wait_for_marker):
        yield plan


def leftovers(root: Path) -> list[str]:
    return sorted(p.name for p in root.iterdir())

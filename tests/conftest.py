"""Shared pytest fixtures."""

import os
import sys

import pytest

# Make the project importable without installing it
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from livecast.transcode import LiveConfig, LadderPlanner, OutputDirectoryManager, ProcessSupervisor  # noqa: E402
from tests.fakes import FakeRunner  # noqa: E402


@pytest.fixture
def live_config(tmp_path):
    """Default live config writing under a temporary media root."""
    return LiveConfig(media_root=str(tmp_path / "media"))


@pytest.fixture
def planner(live_config):
    return LadderPlanner(live_config)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def supervisor(live_config, fake_runner):
    """Supervisor driving fake processes; every job is stopped afterwards."""
    supervisor = ProcessSupervisor(
        live_config,
        output_manager=OutputDirectoryManager(live_config),
        runner=fake_runner,
    )
    yield supervisor
    supervisor.shutdown(timeout=1)

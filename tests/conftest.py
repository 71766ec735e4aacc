"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
import time

import pytest

from runpad.config import RunnerSettings
from runpad.history import RunHistory
from runpad.lifecycle import ProcessLifecycleManager


def _wait_for(predicate, timeout=10.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds or the timeout passes."""
    return _wait_for


@pytest.fixture
def settings(tmp_path) -> RunnerSettings:
    """Settings rooted in a temporary application directory, running this Python."""
    return RunnerSettings(
        interpreter=[sys.executable, "-u"],
        term_timeout=1.0,
        base_dir=str(tmp_path),
    )


@pytest.fixture
def history(settings) -> RunHistory:
    return RunHistory(settings.resolve("run_history.txt"))


@pytest.fixture
def manager(settings, history):
    manager = ProcessLifecycleManager(settings, history=history)
    yield manager
    manager.shutdown()


@pytest.fixture
def recorded_states(manager):
    """Every RunState the manager publishes, in order."""
    states = []
    manager.subscribe(states.append)
    return states

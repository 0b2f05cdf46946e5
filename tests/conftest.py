"""Pytest fixtures for the rancherctl test suite."""
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from support import FakeHost, FakeRuntime, ScriptedConfirmer, make_scope

from rancherctl.config import AppConfig, load_config
from rancherctl.confirm import Confirmer
from rancherctl.gate import ExecutionGate, ExecutionMode
from rancherctl.lifecycle import LifecycleController

FAST_RUNTIME = {"bootstrap_wait": 0, "restart_wait": 0, "verify_interval": 0}


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    """Return a factory building configs rooted in ``tmp_path`` with no waits."""

    def _make(**overrides: object) -> AppConfig:
        runtime = dict(FAST_RUNTIME)
        extra_runtime = overrides.pop("runtime", None)
        if isinstance(extra_runtime, dict):
            runtime.update(extra_runtime)
        return load_config(
            tmp_path / "absent.yml",
            env={},
            overrides={"runtime": runtime, **overrides},
            cwd=tmp_path,
        )

    return _make


@pytest.fixture
def runtime() -> FakeRuntime:
    """Return an empty, reachable fake runtime."""
    return FakeRuntime()


@pytest.fixture
def host() -> FakeHost:
    """Return a fake host with every prerequisite satisfied."""
    return FakeHost()


@pytest.fixture
def sleeps() -> list[float]:
    """Collect sleep durations requested by the controller."""
    return []


@pytest.fixture
def make_controller(
    runtime: FakeRuntime,
    host: FakeHost,
    sleeps: list[float],
) -> Callable[..., LifecycleController]:
    """Return a factory wiring a controller to the fakes."""

    def _make(
        config: AppConfig,
        *,
        confirmer: Confirmer | None = None,
    ) -> LifecycleController:
        mode = ExecutionMode.DRY_RUN if config.dry_run else ExecutionMode.REAL
        gate = ExecutionGate(op=make_scope(config), mode=mode)
        return LifecycleController(
            config,
            runtime=runtime,
            host=host,
            gate=gate,
            confirmer=confirmer or ScriptedConfirmer(),
            sleep=sleeps.append,
        )

    return _make

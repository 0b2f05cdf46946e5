"""Test doubles shared across the rancherctl test suite."""
from __future__ import annotations

import errno
import io
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest
from rich.console import Console

from rancherctl.config import AppConfig
from rancherctl.logging import OperationScope, StructuredLogger
from rancherctl.providers.docker import ContainerInfo, DockerError, RunSpec
from rancherctl.providers.host import HostProvider

MUTATING_CALLS = {"run", "start", "stop", "remove", "pull"}


class FakeRuntime:
    """In-memory stand-in for :class:`rancherctl.providers.docker.DockerRuntime`."""

    def __init__(
        self,
        containers: dict[str, str] | None = None,
        *,
        images: Sequence[str] = (),
        reachable: bool = True,
        logs_text: str = "",
    ) -> None:
        """Seed containers as ``name -> status`` (``running`` or ``exited``)."""
        self.containers: dict[str, str] = dict(containers or {})
        self.container_images: dict[str, str] = {
            name: "rancher/rancher:v2.8.5" for name in self.containers
        }
        self.images: set[str] = set(images)
        self.reachable = reachable
        self.logs_text = logs_text
        self.calls: list[tuple[str, ...]] = []
        self.run_specs: list[RunSpec] = []
        self.failures: dict[str, str] = {}
        self.start_leaves_stopped = False

    @property
    def mutations(self) -> list[tuple[str, ...]]:
        """Return recorded calls that would change runtime state."""
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def _record(self, *call: str) -> None:
        self.calls.append(call)
        message = self.failures.get(call[0])
        if message is not None:
            raise DockerError(message)

    def available(self) -> bool:
        return self.reachable

    def container_names(self, name: str | None = None, *, running_only: bool = False) -> list[str]:
        if not self.reachable:
            raise DockerError("Cannot connect to the Docker daemon")
        names = [
            existing
            for existing, status in self.containers.items()
            if not running_only or status == "running"
        ]
        if name is not None:
            # docker's name filter matches substrings
            names = [existing for existing in names if name in existing]
        return names

    def inspect(self, name: str) -> ContainerInfo:
        if name not in self.containers:
            raise DockerError(f"Error: No such object: {name}")
        return ContainerInfo(
            name=name,
            image=self.container_images.get(name, "rancher/rancher:stable"),
            started_at="2024-05-01T10:00:00Z",
            status=self.containers[name],
        )

    def run(self, spec: RunSpec) -> str:
        self._record("run", spec.name, spec.image)
        self.run_specs.append(spec)
        self.containers[spec.name] = "exited" if self.start_leaves_stopped else "running"
        self.container_images[spec.name] = spec.image
        return "0123456789ab"

    def start(self, name: str) -> None:
        self._record("start", name)
        self.containers[name] = "exited" if self.start_leaves_stopped else "running"

    def stop(self, name: str) -> None:
        self._record("stop", name)
        if name in self.containers:
            self.containers[name] = "exited"

    def remove(self, name: str) -> None:
        self._record("remove", name)
        self.containers.pop(name, None)

    def logs(self, name: str) -> str:
        self._record("logs", name)
        return self.logs_text

    def pull(self, image: str) -> None:
        self._record("pull", image)
        self.images.add(image)

    def image_present(self, image: str) -> bool:
        return image in self.images


class FakeHost(HostProvider):
    """Host provider that records privileged commands instead of running them."""

    def __init__(
        self,
        *,
        tools: Sequence[str] = ("docker", "jq", "curl"),
        manager: str | None = "apt-get",
        root: bool = False,
        in_group: bool = True,
        service_active: bool = True,
        systemctl: bool = True,
    ) -> None:
        """Configure which host facts the fake reports."""
        super().__init__()
        self.tools = set(tools)
        self.manager = manager
        self.root = root
        self.in_group = in_group
        self.active = service_active
        self.systemctl = systemctl
        self.commands: list[list[str]] = []

    def which(self, command: str) -> str | None:
        return f"/usr/bin/{command}" if command in self.tools else None

    def is_root(self) -> bool:
        return self.root

    def current_user(self) -> str:
        return "operator"

    def package_manager(self) -> str | None:
        return self.manager

    def has_systemctl(self) -> bool:
        return self.systemctl

    def service_active(self, service: str) -> bool:
        return self.active

    def user_in_group(self, user: str, group: str) -> bool:
        return self.in_group

    def host_address(self) -> str:
        return "192.0.2.10"

    def _privileged(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        self.commands.append(list(args))
        return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")


class ScriptedConfirmer:
    """Confirmer returning queued answers and recording the prompts."""

    def __init__(self, *answers: bool) -> None:
        """Queue *answers* in prompt order."""
        self.answers = list(answers)
        self.prompts: list[str] = []

    def confirm(self, prompt: str, *, forced_answer: bool) -> bool:
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else False


def quiet_logger(log_file: Path) -> StructuredLogger:
    """Return a logger that writes files but keeps console output in memory."""
    return StructuredLogger(log_file, console=Console(file=io.StringIO(), width=200))


def make_scope(config: AppConfig) -> OperationScope:
    """Return an operation scope bound to a quiet logger for *config*."""
    return OperationScope(
        logger=quiet_logger(config.log_file),
        command="test",
        args={},
        target={},
    )


def log_text(config: AppConfig) -> str:
    """Return the lifecycle log written for *config*."""
    return config.log_file.read_text(encoding="utf-8")


def deny_unlink(monkeypatch: pytest.MonkeyPatch, suffix: str) -> None:
    """Make ``Path.unlink`` fail with EACCES for paths ending in *suffix*."""
    real_unlink = Path.unlink

    def unlink(self: Path, missing_ok: bool = False) -> None:
        if self.name.endswith(suffix):
            raise PermissionError(errno.EACCES, "Permission denied", str(self))
        real_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", unlink)

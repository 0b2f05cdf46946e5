"""Docker CLI provider for the managed Rancher container."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

NO_SUCH_CONTAINER = "no such container"


class DockerError(RuntimeError):
    """Raised when docker commands fail."""


@dataclass(slots=True, frozen=True)
class ContainerInfo:
    """Subset of ``docker inspect`` output used by rancherctl."""

    name: str
    image: str
    started_at: str
    status: str


@dataclass(slots=True, frozen=True)
class RunSpec:
    """Arguments for creating the managed container."""

    name: str
    image: str
    volume_args: Sequence[str] = ()
    ports: Sequence[tuple[int, int]] = ((80, 80), (443, 443))
    privileged: bool = True
    restart_policy: str = "unless-stopped"
    command: Sequence[str] = field(default_factory=tuple)

    def to_args(self) -> list[str]:
        """Return the ``docker run`` arguments (without the binary)."""
        args = ["run", "-d", f"--restart={self.restart_policy}", "--name", self.name]
        args.extend(self.volume_args)
        for host_port, container_port in self.ports:
            args.extend(["-p", f"{host_port}:{container_port}"])
        if self.privileged:
            args.append("--privileged")
        args.append(self.image)
        args.extend(self.command)
        return args


class ContainerRuntime(Protocol):
    """Capabilities required from a container runtime."""

    def available(self) -> bool: ...

    def container_names(
        self, name: str | None = None, *, running_only: bool = False
    ) -> list[str]: ...

    def inspect(self, name: str) -> ContainerInfo: ...

    def run(self, spec: RunSpec) -> str: ...

    def start(self, name: str) -> None: ...

    def stop(self, name: str) -> None: ...

    def remove(self, name: str) -> None: ...

    def logs(self, name: str) -> str: ...

    def pull(self, image: str) -> None: ...

    def image_present(self, image: str) -> bool: ...


@dataclass(slots=True)
class DockerRuntime:
    """Drive the docker CLI through :mod:`subprocess`."""

    docker_bin: str = "docker"

    def available(self) -> bool:
        """Return True when the docker binary exists and the daemon answers."""
        if shutil.which(self.docker_bin) is None:
            return False
        try:
            self._docker(["info"], error_prefix="docker info")
        except DockerError:
            return False
        return True

    def container_names(
        self, name: str | None = None, *, running_only: bool = False
    ) -> list[str]:
        """Return container names from ``docker ps -a``, optionally filtered by *name*.

        Docker's name filter is a substring match; callers compare for equality.
        """
        args = ["ps", "-a", "--format", "{{.Names}}"]
        if name is not None:
            args.extend(["--filter", f"name={name}"])
        if running_only:
            args.extend(["--filter", "status=running"])
        result = self._docker(args, error_prefix="docker ps")
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def inspect(self, name: str) -> ContainerInfo:
        """Return image, start time and status for *name*."""
        result = self._docker(
            [
                "inspect",
                "--format",
                "{{.Config.Image}}|{{.State.StartedAt}}|{{.State.Status}}",
                name,
            ],
            error_prefix=f"docker inspect {name}",
        )
        parts = (result.stdout or "").strip().split("|")
        if len(parts) != 3:
            raise DockerError(f"Unexpected docker inspect output for {name}: {result.stdout!r}")
        image, started_at, status = (part.strip() for part in parts)
        return ContainerInfo(name=name, image=image, started_at=started_at, status=status)

    def run(self, spec: RunSpec) -> str:
        """Create and start a container from *spec*; return its id."""
        result = self._docker(spec.to_args(), error_prefix=f"docker run {spec.name}")
        return (result.stdout or "").strip()

    def start(self, name: str) -> None:
        """Start an existing container."""
        self._docker(["start", name], error_prefix=f"docker start {name}")

    def stop(self, name: str) -> None:
        """Stop *name*; an absent container is not an error."""
        self._tolerant(["stop", name], error_prefix=f"docker stop {name}")

    def remove(self, name: str) -> None:
        """Remove *name*; an absent container is not an error."""
        self._tolerant(["rm", name], error_prefix=f"docker rm {name}")

    def logs(self, name: str) -> str:
        """Return combined stdout/stderr log output of *name*."""
        result = self._docker(["logs", name], error_prefix=f"docker logs {name}")
        return (result.stdout or "") + (result.stderr or "")

    def pull(self, image: str) -> None:
        """Pull *image* from its registry."""
        self._docker(["pull", image], error_prefix=f"docker pull {image}")

    def image_present(self, image: str) -> bool:
        """Return True when *image* exists in the local image store."""
        result = self._docker(
            ["image", "inspect", image],
            error_prefix=f"docker image inspect {image}",
            check=False,
        )
        return result.returncode == 0

    # ------------------------------------------------------------------
    def _tolerant(self, args: Sequence[str], *, error_prefix: str) -> None:
        try:
            self._docker(args, error_prefix=error_prefix)
        except DockerError as exc:
            if NO_SUCH_CONTAINER in str(exc).lower():
                return
            raise

    def _docker(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.docker_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DockerError(f"{self.docker_bin} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise DockerError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ContainerInfo", "ContainerRuntime", "DockerError", "DockerRuntime", "RunSpec"]

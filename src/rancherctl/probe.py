"""Read-only queries against the container runtime for the managed instance."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import RuntimeUnavailable
from .providers.docker import ContainerRuntime, DockerError

UNKNOWN = "unknown"


class InstanceState(str, Enum):
    """Observable state of the managed container."""

    NON_EXISTENT = "non_existent"
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(slots=True, frozen=True)
class InstanceDescription:
    """Image and start time of the managed container."""

    image: str = UNKNOWN
    started_at: str = UNKNOWN

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"image": self.image, "started_at": self.started_at}


class RuntimeProbe:
    """Answer exists/running/describe questions for one named container.

    During dry-run composites the controller records the state a skipped
    mutation would have produced with :meth:`project`; subsequent queries
    answer from that projection instead of the runtime.
    """

    def __init__(self, runtime: ContainerRuntime, name: str) -> None:
        """Bind the probe to *runtime* and the container *name*."""
        self.runtime = runtime
        self.name = name
        self._projected: InstanceState | None = None

    @property
    def projected(self) -> bool:
        """Return True when answers come from a dry-run projection."""
        return self._projected is not None

    def project(self, state: InstanceState) -> None:
        """Pretend the instance is in *state* for later queries."""
        self._projected = state

    def ensure_available(self) -> None:
        """Raise :class:`RuntimeUnavailable` when docker cannot be reached."""
        if not self.runtime.available():
            raise RuntimeUnavailable(
                "Docker is not installed or the daemon is not running. "
                "Run with --install to provision it."
            )

    def exists(self) -> bool:
        """Return True when a container with exactly the managed name exists."""
        if self._projected is not None:
            return self._projected is not InstanceState.NON_EXISTENT
        return self.name in self._names(running_only=False)

    def running(self) -> bool:
        """Return True when the managed container is running."""
        if self._projected is not None:
            return self._projected is InstanceState.RUNNING
        return self.name in self._names(running_only=True)

    def state(self) -> InstanceState:
        """Return the current :class:`InstanceState`."""
        if self._projected is not None:
            return self._projected
        if self.running():
            return InstanceState.RUNNING
        if self.exists():
            return InstanceState.STOPPED
        return InstanceState.NON_EXISTENT

    def describe(self) -> InstanceDescription:
        """Return image and start time, falling back to ``unknown`` on errors."""
        if self._projected is not None:
            return InstanceDescription()
        try:
            info = self.runtime.inspect(self.name)
        except DockerError:
            return InstanceDescription()
        return InstanceDescription(
            image=info.image or UNKNOWN,
            started_at=info.started_at or UNKNOWN,
        )

    def _names(self, *, running_only: bool) -> list[str]:
        try:
            return self.runtime.container_names(self.name, running_only=running_only)
        except DockerError as exc:
            raise RuntimeUnavailable(f"Unable to query docker: {exc}") from exc


__all__ = ["InstanceDescription", "InstanceState", "RuntimeProbe", "UNKNOWN"]

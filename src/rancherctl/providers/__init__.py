"""Provider interfaces for rancherctl."""
from __future__ import annotations

from .docker import ContainerInfo, ContainerRuntime, DockerError, DockerRuntime, RunSpec
from .host import HostError, HostProvider

__all__ = [
    "ContainerInfo",
    "ContainerRuntime",
    "DockerError",
    "DockerRuntime",
    "HostError",
    "HostProvider",
    "RunSpec",
]

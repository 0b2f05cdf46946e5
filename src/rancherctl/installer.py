"""Provision host prerequisites and pull the Rancher image."""
from __future__ import annotations

import textwrap
from dataclasses import dataclass, field

from .config import AppConfig
from .errors import (
    AlreadyProvisioned,
    DependencyInstallFailed,
    PathNotWritable,
    RuntimeOperationFailed,
)
from .gate import ExecutionGate
from .probe import RuntimeProbe
from .providers.docker import ContainerRuntime, DockerError
from .providers.host import HostError, HostProvider
from .state import StateFiles, resolve_version


@dataclass(slots=True)
class InstallReport:
    """Summary of what :meth:`DependencyInstaller.install` did."""

    version: str
    image: str
    pulled: bool = False
    group_added: bool = False
    packages: list[str] = field(default_factory=list)


class DependencyInstaller:
    """Bring the host to the point where the container can be started.

    Every step is skipped when it is already satisfied, so the installer can
    be re-run safely after a partial failure.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        probe: RuntimeProbe,
        runtime: ContainerRuntime,
        host: HostProvider,
        gate: ExecutionGate,
        state_files: StateFiles,
    ) -> None:
        """Wire the installer to its collaborators."""
        self.config = config
        self.probe = probe
        self.runtime = runtime
        self.host = host
        self.gate = gate
        self.state_files = state_files

    def install(self) -> InstallReport:
        """Install prerequisites, prepare the data directory and pull the image."""
        op = self.gate.op
        self._check_not_provisioned()

        if self.host.is_root():
            op.warning("Running as root. Consider running as a regular user with sudo access.")

        packages = self._ensure_tools()
        self._ensure_service()
        group_added = self._ensure_group()
        self._ensure_data_dir()

        version = resolve_version(self.config.version)
        self.state_files.record_version(self.gate, version)
        image = self.config.container.image_ref(version)
        pulled = self.pull_image(image)

        return InstallReport(
            version=version,
            image=image,
            pulled=pulled,
            group_added=group_added,
            packages=packages,
        )

    def pull_image(self, image: str) -> bool:
        """Pull *image* unless running offline; return True when a pull ran."""
        op = self.gate.op
        if self.config.offline:
            op.warning(f"Offline mode: skipping pull of {image}.")
            return False
        if not self.gate.dry_run:
            self.probe.ensure_available()
        try:
            outcome = self.gate.perform(f"docker pull {image}", lambda: self.runtime.pull(image))
        except DockerError as exc:
            raise RuntimeOperationFailed(f"Failed to pull {image}: {exc}") from exc
        return outcome.executed

    # ------------------------------------------------------------------
    def _check_not_provisioned(self) -> None:
        if not self.probe.projected and not self.runtime.available():
            return
        if not self.probe.exists():
            return
        name = self.config.container.name
        raise AlreadyProvisioned(
            textwrap.dedent(
                f"""\
                Rancher container '{name}' already exists. Options:
                  --start                          start the existing container
                  --upgrade                        upgrade to a new version
                  --cleanup --force, then --install --start   reinstall from scratch
                  --rebuild                        back up, reinstall and start"""
            )
        )

    def _ensure_tools(self) -> list[str]:
        missing = [
            package
            for command, package in self.config.dependencies.tools
            if self.host.which(command) is None
        ]
        if not missing:
            self.gate.op.info("Required tools already installed.")
            return []
        joined = ", ".join(missing)
        if self.config.offline:
            raise DependencyInstallFailed(
                f"Offline mode: missing packages cannot be installed: {joined}."
            )

        manager = self.host.package_manager()
        if manager is None:
            supported = ", ".join(self.config.dependencies.package_managers)
            raise DependencyInstallFailed(
                f"No supported package manager found ({supported}); install manually: {joined}."
            )

        for package in missing:
            try:
                self.gate.perform(
                    f"{manager} install -y {package}",
                    lambda package=package: self.host.install_package(manager, package),
                )
            except HostError as exc:
                raise DependencyInstallFailed(f"Failed to install {package}: {exc}") from exc
        return missing

    def _ensure_service(self) -> None:
        service = self.config.runtime.service
        if not self.host.has_systemctl():
            self.gate.op.warning(
                f"systemctl not available; cannot verify the {service} service is running."
            )
            return
        if self.host.service_active(service):
            return
        try:
            self.gate.perform(
                f"systemctl start {service}",
                lambda: self.host.start_service(service),
            )
            self.gate.perform(
                f"systemctl enable {service}",
                lambda: self.host.enable_service(service),
            )
        except HostError as exc:
            raise DependencyInstallFailed(f"Failed to start {service}: {exc}") from exc

    def _ensure_group(self) -> bool:
        if self.host.is_root():
            return False
        group = self.config.runtime.group
        user = self.host.current_user()
        if self.host.user_in_group(user, group):
            return False
        try:
            outcome = self.gate.perform(
                f"usermod -aG {group} {user}",
                lambda: self.host.add_user_to_group(user, group),
            )
        except HostError as exc:
            raise DependencyInstallFailed(f"Failed to add {user} to {group}: {exc}") from exc
        if outcome.executed:
            self.gate.op.warning(
                f"User {user} was added to the '{group}' group. "
                "Log out and back in for the change to take effect."
            )
        return outcome.executed

    def _ensure_data_dir(self) -> None:
        data_dir = self.config.data_dir
        if data_dir.is_dir():
            return
        try:
            self.gate.perform(
                f"mkdir -p {data_dir} && chmod 755 {data_dir}",
                lambda: self.host.make_dir(data_dir, 0o755),
            )
        except HostError as exc:
            raise PathNotWritable(str(exc)) from exc


__all__ = ["DependencyInstaller", "InstallReport"]

"""Lifecycle controller for the managed Rancher container.

Each action drives the container from whatever state the runtime probe
reports towards the action's target state:

=================  ==============================================  ===========
Action             Effect                                          Ends in
=================  ==============================================  ===========
install            provision host prerequisites, pull image        unchanged
start              resume or create, settle, verify                running
stop               stop and remove when present                    absent
upgrade            pull new tag, stop, start                       running
cleanup            stop, optional backup, optional data removal    absent
rebuild            snapshot, prune, forced cleanup, install, start running
verify             fail unless running                             unchanged
status             describe                                        unchanged
install_and_start  install then start, report access details       running
=================  ==============================================  ===========

In dry-run mode no mutation reaches the runtime; the probe is told which
state each skipped mutation would have produced so later decisions in a
composite action follow the same path a real run would take.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from .actions import Action
from .backups import DEFAULT_RETENTION, BackupManager, SnapshotKind
from .config import AppConfig
from .confirm import Confirmer, ForcedConfirmer
from .errors import (
    DataDeletionFailed,
    InstanceNotRunning,
    LifecycleError,
    OfflineImageUnavailable,
    RuntimeOperationFailed,
    RuntimeUnavailable,
)
from .gate import ExecutionGate
from .installer import DependencyInstaller, InstallReport
from .logging import OperationScope
from .probe import InstanceDescription, InstanceState, RuntimeProbe
from .providers.docker import ContainerRuntime, DockerError, RunSpec
from .providers.host import HostError, HostProvider
from .state import StateFiles, bootstrap_lines, extract_bootstrap_password, resolve_version

T = TypeVar("T")


@dataclass(slots=True)
class ActionResult:
    """Outcome of one controller action."""

    action: Action
    state: InstanceState
    changed: int = 0
    completed: list[str] = field(default_factory=list)
    backups: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    description: InstanceDescription | None = None
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "action": self.action.value,
            "state": self.state.value,
            "changed": self.changed,
            "completed": list(self.completed),
            "backups": list(self.backups),
            "warnings": list(self.warnings),
            "description": self.description.to_dict() if self.description else None,
            "details": dict(self.details),
        }


class LifecycleController:
    """Execute lifecycle actions against the single managed container."""

    def __init__(
        self,
        config: AppConfig,
        *,
        runtime: ContainerRuntime,
        host: HostProvider,
        gate: ExecutionGate,
        confirmer: Confirmer,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Build the controller and its collaborators from *config*."""
        self.config = config
        self.runtime = runtime
        self.host = host
        self.gate = gate
        self.confirmer = confirmer
        self.sleep = sleep
        self.name = config.container.name
        self.probe = RuntimeProbe(runtime, self.name)
        self.state_files = StateFiles(
            version_file=config.state_files.version_file,
            credential_file=config.state_files.credential_file,
            host=host,
        )
        self.backups = BackupManager(root=config.backups.root, gate=gate, host=host)
        self.installer = DependencyInstaller(
            config,
            probe=self.probe,
            runtime=runtime,
            host=host,
            gate=gate,
            state_files=self.state_files,
        )
        self._completed: list[str] = []
        self._backups: list[str] = []
        self._details: dict[str, object] = {}
        self._description: InstanceDescription | None = None

    @property
    def op(self) -> OperationScope:
        """Return the active operation scope."""
        return self.gate.op

    def run(self, action: Action) -> ActionResult:
        """Execute *action* and return its :class:`ActionResult`.

        Failures inside composite actions are re-raised with the list of
        sub-steps that had already completed; nothing is rolled back.
        """
        handlers: dict[Action, Callable[[], InstanceState]] = {
            Action.INSTALL: self.install,
            Action.START: self.start,
            Action.STOP: self.stop,
            Action.UPGRADE: self.upgrade,
            Action.CLEANUP: self.cleanup,
            Action.VERIFY: self.verify,
            Action.STATUS: self.status,
            Action.REBUILD: self.rebuild,
            Action.INSTALL_AND_START: self.install_and_start,
        }
        self._completed = []
        self._backups = []
        self._details = {}
        self._description = None
        try:
            state = handlers[action]()
        except LifecycleError as exc:
            if not exc.completed:
                exc.completed = list(self._completed)
            raise

        changed = sum(1 for step in self.op.steps if step.get("status") == "success")
        return ActionResult(
            action=action,
            state=state,
            changed=changed,
            completed=list(self._completed),
            backups=list(self._backups),
            warnings=list(self.op.warnings),
            description=self._description,
            details=dict(self._details),
        )

    # Actions -------------------------------------------------------------
    def install(self, *, show_next_steps: bool = True) -> InstanceState:
        """Provision prerequisites and pull the target image."""
        report = self.installer.install()
        self._details["version"] = report.version
        self._details["image"] = report.image
        if show_next_steps:
            self._print_next_steps(report)
        return InstanceState.NON_EXISTENT

    def start(self) -> InstanceState:
        """Bring the container to running; a running container is left alone."""
        self._require_runtime()
        state = self.probe.state()
        if state is InstanceState.RUNNING:
            self.op.info(f"Rancher container '{self.name}' is already running.")
            return InstanceState.RUNNING

        if state is InstanceState.STOPPED:
            self.op.info(f"Starting existing Rancher container '{self.name}'...")
            self._mutate(
                f"docker start {self.name}",
                lambda: self.runtime.start(self.name),
                InstanceState.RUNNING,
            )
            self._settle(self.config.runtime.restart_wait, "the container to restart")
        else:
            self._create_container()
            self._settle(self.config.runtime.bootstrap_wait, "Rancher to initialise")
            self._capture_credential()

        self._verify_running()
        return InstanceState.RUNNING

    def stop(self) -> InstanceState:
        """Stop and remove the container; an absent container is not an error."""
        self._require_runtime()
        if not self.probe.exists():
            self.op.info(f"No Rancher container '{self.name}' found; nothing to stop.")
            return InstanceState.NON_EXISTENT

        self.op.info(f"Stopping and removing Rancher container '{self.name}'...")
        self._mutate(
            f"docker stop {self.name}",
            lambda: self.runtime.stop(self.name),
            InstanceState.STOPPED,
        )
        self._mutate(
            f"docker rm {self.name}",
            lambda: self.runtime.remove(self.name),
            InstanceState.NON_EXISTENT,
        )
        return InstanceState.NON_EXISTENT

    def upgrade(self) -> InstanceState:
        """Pull the requested tag, then replace the container with a new one."""
        self._require_runtime()
        version = resolve_version(self.config.version)
        image = self.config.container.image_ref(version)
        self._details["version"] = version
        self._details["image"] = image
        self.op.info(f"Upgrading Rancher to {version}...")

        if self.config.offline:
            if not self.gate.dry_run and not self.runtime.image_present(image):
                raise OfflineImageUnavailable(
                    f"Offline mode: image {image} is not available locally; cannot upgrade."
                )
            self.op.warning(f"Offline mode: using local image {image} without pulling.")
        else:
            self._step("pull", lambda: self.installer.pull_image(image))
        self.state_files.record_version(self.gate, version)

        self._step("stop", self.stop)
        return self._step("start", self.start)

    def cleanup(self, *, confirmer: Confirmer | None = None) -> InstanceState:
        """Remove the container and, when confirmed, its data and state files."""
        answer = confirmer or self.confirmer
        self._require_runtime()
        self._step("stop", self.stop)

        data_dir = self.config.data_dir
        if data_dir.is_dir():
            if answer.confirm("Create backup before cleanup?", forced_answer=False):
                snapshot = self._step(
                    "backup",
                    lambda: self.backups.snapshot(data_dir, SnapshotKind.CLEANUP),
                )
                self._backups.append(str(snapshot.path))

            if answer.confirm(f"Delete Rancher data at {data_dir}?", forced_answer=True):
                try:
                    self.gate.perform(f"rm -rf {data_dir}", lambda: self.host.remove_tree(data_dir))
                except HostError as exc:
                    raise DataDeletionFailed(
                        f"Failed to delete Rancher data at {data_dir}: {exc}"
                    ) from exc
                self._completed.append("delete-data")
            else:
                self.op.info(f"Keeping Rancher data at {data_dir}.")
        else:
            self.op.info(f"No Rancher data directory at {data_dir}.")

        self.state_files.remove(self.gate)
        self.op.info("Cleanup completed.")
        return InstanceState.NON_EXISTENT

    def rebuild(self) -> InstanceState:
        """Snapshot and prune, then reinstall from scratch and start."""
        self._require_runtime()
        data_dir = self.config.data_dir
        keep: list[Path] = []
        if data_dir.is_dir():
            snapshot = self._step(
                "backup",
                lambda: self.backups.snapshot(data_dir, SnapshotKind.REBUILD),
            )
            self._backups.append(str(snapshot.path))
            if not snapshot.compressed:
                keep.append(snapshot.staging_dir)
        else:
            self.op.info(f"No Rancher data directory at {data_dir}; skipping backup.")

        pruned = self._step("prune", lambda: self.backups.prune(DEFAULT_RETENTION, exclude=keep))
        self._details["pruned"] = [str(path) for path in pruned.removed]

        self._step("cleanup", lambda: self.cleanup(confirmer=ForcedConfirmer()))
        self._step("install", lambda: self.install(show_next_steps=False))
        return self._step("start", self.start)

    def verify(self) -> InstanceState:
        """Succeed only when the container is running."""
        self.probe.ensure_available()
        if not self.probe.running():
            raise InstanceNotRunning(
                f"Rancher container '{self.name}' is not running. "
                f"Check logs with: docker logs {self.name}"
            )
        self.op.info(f"Rancher container '{self.name}' is running.")
        return InstanceState.RUNNING

    def status(self) -> InstanceState:
        """Report whether the container exists, runs, and which image it uses."""
        self.probe.ensure_available()
        state = self.probe.state()
        if state is InstanceState.NON_EXISTENT:
            self.op.info(f"Rancher container '{self.name}' does not exist.")
            return state

        description = self.probe.describe()
        self._description = description
        label = "running" if state is InstanceState.RUNNING else "stopped"
        self.op.info(f"Rancher container '{self.name}' is {label}.")
        self.op.info(f"Image: {description.image} | Started: {description.started_at}")
        return state

    def install_and_start(self) -> InstanceState:
        """Install prerequisites, start the container and report access details."""
        self._step("install", lambda: self.install(show_next_steps=False))
        state = self._step("start", self.start)

        password = self.state_files.read_password()
        if password is None and not self.gate.dry_run:
            password = self._password_from_logs()
        url = f"https://{self.host.host_address()}"
        self._details["url"] = url

        self.op.info("Rancher installation and startup complete!")
        if password:
            self.op.info(f"Bootstrap password: {password}")
        elif not self.gate.dry_run:
            self.op.warning(
                "Bootstrap password not available yet. Retrieve it later with: "
                f"docker logs {self.name} 2>&1 | grep 'Bootstrap Password:'"
            )
        self.op.info(f"Access Rancher at: {url}")
        return state

    # Helpers -------------------------------------------------------------
    def _step(self, name: str, func: Callable[[], T]) -> T:
        value = func()
        self._completed.append(name)
        return value

    def _require_runtime(self) -> None:
        if self.probe.projected:
            return
        try:
            self.probe.ensure_available()
        except RuntimeUnavailable as exc:
            if not self.gate.dry_run:
                raise
            self.op.warning(f"{exc} Dry run assumes the container does not exist.")
            self.probe.project(InstanceState.NON_EXISTENT)

    def _mutate(
        self,
        description: str,
        action: Callable[[], object],
        projected: InstanceState,
    ) -> None:
        try:
            outcome = self.gate.perform(description, action)
        except DockerError as exc:
            raise RuntimeOperationFailed(f"{description} failed: {exc}") from exc
        if not outcome.executed:
            self.probe.project(projected)

    def _create_container(self) -> None:
        version = resolve_version(self.config.version)
        image = self.config.container.image_ref(version)
        self._details["version"] = version
        self._details["image"] = image
        if self.config.offline and not self.gate.dry_run and not self.runtime.image_present(image):
            raise OfflineImageUnavailable(
                f"Offline mode: image {image} is not available locally; cannot create container."
            )

        container = self.config.container
        command: tuple[str, ...] = ()
        if self.config.acme_domain:
            command = ("--acme-domain", self.config.acme_domain)
        spec = RunSpec(
            name=self.name,
            image=image,
            volume_args=tuple(self.config.volume_args),
            ports=((container.http_port, 80), (container.https_port, 443)),
            privileged=container.privileged,
            restart_policy=container.restart_policy,
            command=command,
        )
        self.op.info(f"Creating Rancher container '{self.name}' from {image}...")
        self._mutate(
            " ".join([self.config.runtime.docker_bin, *spec.to_args()]),
            lambda: self.runtime.run(spec),
            InstanceState.RUNNING,
        )

    def _settle(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        if self.gate.dry_run:
            self.op.info(f"[DRY-RUN] Would wait {seconds:g}s for {reason}")
            return
        self.op.info(f"Waiting {seconds:g}s for {reason}...")
        self.sleep(seconds)

    def _capture_credential(self) -> str | None:
        if self.gate.dry_run:
            self.state_files.record_credential(self.gate, [])
            return None
        try:
            logs = self.runtime.logs(self.name)
        except DockerError as exc:
            self.op.warning(f"Could not read container logs for the bootstrap password: {exc}")
            return None
        lines = bootstrap_lines(logs)
        if not lines:
            self.op.warning(
                "Bootstrap password not found in container logs yet. Check later with: "
                f"docker logs {self.name} 2>&1 | grep 'Bootstrap Password:'"
            )
            return None
        self.state_files.record_credential(self.gate, lines)
        self.op.info(f"Bootstrap password saved to {self.state_files.credential_file}")
        return extract_bootstrap_password(logs)

    def _password_from_logs(self) -> str | None:
        try:
            logs = self.runtime.logs(self.name)
        except DockerError:
            return None
        password = extract_bootstrap_password(logs)
        if password:
            self.state_files.record_credential(self.gate, bootstrap_lines(logs))
        return password

    def _verify_running(self) -> None:
        attempts = self.config.runtime.verify_attempts
        for attempt in range(1, attempts + 1):
            if self.probe.running():
                self.op.info(f"Rancher container '{self.name}' is running.")
                return
            if attempt < attempts:
                self._settle(
                    self.config.runtime.verify_interval,
                    f"the container to report running (attempt {attempt}/{attempts})",
                )
        raise InstanceNotRunning(
            f"Rancher container '{self.name}' failed to start. "
            f"Check logs with: docker logs {self.name}"
        )

    def _print_next_steps(self, report: InstallReport) -> None:
        version_flag = f" --rancher-version {self.config.version}" if self.config.version else ""
        self.op.info("Rancher prerequisites installed.")
        self.op.info("Next steps:")
        self.op.info(f"  Start Rancher:  rancherctl --start{version_flag}")
        self.op.info(f"  Image:          {report.image}")
        self.op.info(f"  Password file:  {self.state_files.credential_file}")
        self.op.info(f"  Access UI at:   https://{self.host.host_address()}")


__all__ = ["ActionResult", "LifecycleController"]

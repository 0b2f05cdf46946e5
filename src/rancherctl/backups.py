"""Snapshots of the Rancher data directory and bounded archive retention."""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .archive import ARCHIVE_SUFFIX, ArchiveError, create_archive
from .errors import BackupFailed
from .gate import ExecutionGate
from .providers.host import HostError, HostProvider

DEFAULT_RETENTION = 7
STAGING_MARKER = "_backup_"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class SnapshotKind:
    """Name fragments distinguishing snapshot origins."""

    REBUILD = "backup"
    CLEANUP = "cleanup_backup"


@dataclass(slots=True, frozen=True)
class SnapshotResult:
    """Outcome of :meth:`BackupManager.snapshot`."""

    staging_dir: Path
    archive: Path | None
    compressed: bool
    executed: bool

    @property
    def path(self) -> Path:
        """Return the artefact that holds the backup."""
        return self.archive if self.archive is not None else self.staging_dir


@dataclass(slots=True, frozen=True)
class PruneResult:
    """Outcome of :meth:`BackupManager.prune`."""

    kept: tuple[Path, ...]
    removed: tuple[Path, ...]
    staging_removed: tuple[Path, ...]


@dataclass(slots=True)
class BackupManager:
    """Create compressed snapshots and prune old archives under *root*."""

    root: Path
    gate: ExecutionGate
    host: HostProvider
    archiver: Callable[[Path, Path], None] = create_archive
    clock: Callable[[], datetime] = datetime.now

    def ensure_root(self) -> None:
        """Create the backup root when it does not exist yet."""
        if self.root.is_dir():
            return
        try:
            self.gate.perform(
                f"mkdir -p {self.root}",
                lambda: self.host.make_dir(self.root, 0o750),
            )
        except HostError as exc:
            raise BackupFailed(f"Failed to prepare backup root {self.root}: {exc}") from exc

    def snapshot_name(self, data_dir: Path, kind: str) -> str:
        """Return a name for a new snapshot that collides with nothing under root."""
        base = f"{data_dir.name}_{kind}_{self.clock().strftime(TIMESTAMP_FORMAT)}"
        name = base
        counter = 1
        while (self.root / name).exists() or (self.root / f"{name}{ARCHIVE_SUFFIX}").exists():
            name = f"{base}-{counter}"
            counter += 1
        return name

    def snapshot(self, data_dir: Path, kind: str = SnapshotKind.REBUILD) -> SnapshotResult:
        """Copy *data_dir* into the backup root and compress it.

        A copy failure raises :class:`BackupFailed` before anything is
        compressed. When compression fails the uncompressed copy is kept and a
        warning is recorded.
        """
        if not self.gate.dry_run and not data_dir.is_dir():
            raise BackupFailed(f"Data directory {data_dir} does not exist; nothing to back up.")

        self.ensure_root()
        name = self.snapshot_name(data_dir, kind)
        staging = self.root / name
        archive = self.root / f"{name}{ARCHIVE_SUFFIX}"
        op = self.gate.op
        op.info(f"Creating backup of {data_dir} at {archive}")

        try:
            copied = self.gate.perform(
                f"cp -a {data_dir} {staging}",
                lambda: self.host.copy_tree(data_dir, staging),
            )
        except HostError as exc:
            raise BackupFailed(f"Backup copy of {data_dir} failed: {exc}") from exc

        try:
            self.gate.perform(
                f"tar -czf {archive} -C {self.root} {name}",
                lambda: self.archiver(staging, archive),
            )
        except ArchiveError as exc:
            op.warning(f"Compression failed, uncompressed backup kept at {staging}: {exc}")
            return SnapshotResult(
                staging_dir=staging,
                archive=None,
                compressed=False,
                executed=copied.executed,
            )

        try:
            self.gate.perform(f"rm -rf {staging}", lambda: self.host.remove_tree(staging))
        except HostError as exc:
            op.warning(f"Could not remove backup staging directory {staging}: {exc}")

        if copied.executed:
            op.info(f"Backup created: {archive}")
        return SnapshotResult(
            staging_dir=staging,
            archive=archive,
            compressed=True,
            executed=copied.executed,
        )

    def list_archives(self) -> list[Path]:
        """Return archives directly under root, newest first."""
        if not self.root.is_dir():
            return []
        archives = [
            path
            for path in self.root.iterdir()
            if path.is_file() and path.name.endswith(ARCHIVE_SUFFIX)
        ]
        archives.sort(key=lambda path: (path.stat().st_mtime, path.name), reverse=True)
        return archives

    def prune(
        self,
        retention_count: int = DEFAULT_RETENTION,
        *,
        exclude: Iterable[Path] = (),
    ) -> PruneResult:
        """Keep the newest *retention_count* archives and drop stale staging copies."""
        if retention_count < 0:
            raise ValueError("retention_count must not be negative.")

        archives = self.list_archives()
        kept = tuple(archives[:retention_count])
        removed: list[Path] = []
        for path in archives[retention_count:]:
            try:
                self.gate.perform(f"rm -f {path}", lambda path=path: self.host.remove_file(path))
            except HostError as exc:
                raise BackupFailed(f"Failed to prune old backup {path}: {exc}") from exc
            removed.append(path)

        excluded = {path.resolve() for path in exclude}
        staging_removed: list[Path] = []
        if self.root.is_dir():
            for path in sorted(self.root.iterdir()):
                if not path.is_dir() or STAGING_MARKER not in path.name:
                    continue
                if path.resolve() in excluded:
                    continue
                try:
                    self.gate.perform(
                        f"rm -rf {path}",
                        lambda path=path: self.host.remove_tree(path),
                    )
                except HostError as exc:
                    self.gate.op.warning(f"Could not remove stale backup directory {path}: {exc}")
                    continue
                staging_removed.append(path)

        if removed:
            self.gate.op.info(
                f"Pruned {len(removed)} old backup(s); keeping {len(kept)} most recent."
            )
        return PruneResult(
            kept=kept,
            removed=tuple(removed),
            staging_removed=tuple(staging_removed),
        )


__all__ = [
    "DEFAULT_RETENTION",
    "BackupManager",
    "PruneResult",
    "SnapshotKind",
    "SnapshotResult",
]

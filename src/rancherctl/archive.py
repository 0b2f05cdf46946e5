"""Archive helpers used by the backup manager."""
from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

ARCHIVE_SUFFIX = ".tar.gz"


class ArchiveError(RuntimeError):
    """Raised when an archive cannot be created."""


def create_archive(source_dir: Path, archive_path: Path) -> None:
    """Create a gzip-compressed tarball of *source_dir* at *archive_path*."""
    tar_bin = shutil.which("tar")
    if tar_bin is None:
        raise ArchiveError("The 'tar' command is required to create archives.")

    cmd = [
        tar_bin,
        "-czf",
        str(archive_path),
        "-C",
        str(source_dir.parent),
        source_dir.name,
    ]
    result = subprocess.run(  # noqa: S603, S607 - controlled command execution
        cmd,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        archive_path.unlink(missing_ok=True)
        message = result.stderr or result.stdout or "tar command failed"
        raise ArchiveError(message.strip())

    try:
        os.chmod(archive_path, 0o640)
    except OSError:
        pass


__all__ = ["ARCHIVE_SUFFIX", "ArchiveError", "create_archive"]

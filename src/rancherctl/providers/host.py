"""Host provider: packages, services, groups and privileged filesystem helpers."""
from __future__ import annotations

import errno
import getpass
import grp
import os
import pwd
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path


class HostError(RuntimeError):
    """Raised when host commands fail."""


@dataclass(slots=True)
class HostProvider:
    """Run host-level commands needed to provision the container runtime."""

    systemctl_bin: str = "systemctl"
    sudo_bin: str = "sudo"
    package_managers: Sequence[str] = ("apt-get", "dnf", "yum")

    # Queries -----------------------------------------------------------
    def which(self, command: str) -> str | None:
        """Return the resolved path of *command* or None."""
        return shutil.which(command)

    def is_root(self) -> bool:
        """Return True when running with uid 0."""
        return os.geteuid() == 0

    def current_user(self) -> str:
        """Return the invoking user name."""
        return os.environ.get("USER") or getpass.getuser()

    def package_manager(self) -> str | None:
        """Return the first supported package manager found on PATH."""
        for manager in self.package_managers:
            if shutil.which(manager) is not None:
                return manager
        return None

    def has_systemctl(self) -> bool:
        """Return True when systemctl is available."""
        return shutil.which(self.systemctl_bin) is not None

    def service_active(self, service: str) -> bool:
        """Return True when ``systemctl is-active`` reports *service* as active."""
        result = self._run_command(
            [self.systemctl_bin, "is-active", "--quiet", service],
            check=False,
            error_prefix=f"{self.systemctl_bin} is-active {service}",
        )
        return result.returncode == 0

    def user_in_group(self, user: str, group: str) -> bool:
        """Return True when *user* is a member of *group*."""
        try:
            group_entry = grp.getgrnam(group)
        except KeyError:
            return False
        if user in group_entry.gr_mem:
            return True
        try:
            return pwd.getpwnam(user).pw_gid == group_entry.gr_gid
        except KeyError:
            return False

    def host_address(self) -> str:
        """Return the first address reported by ``hostname -I``."""
        try:
            result = self._run_command(
                ["hostname", "-I"], check=True, error_prefix="hostname -I"
            )
        except HostError:
            return "localhost"
        addresses = (result.stdout or "").split()
        return addresses[0] if addresses else "localhost"

    # Mutations ---------------------------------------------------------
    def install_package(self, manager: str, package: str) -> None:
        """Install *package* with *manager*."""
        if manager == "apt-get":
            self._privileged([manager, "update"], error_prefix=f"{manager} update")
        self._privileged(
            [manager, "install", "-y", package],
            error_prefix=f"{manager} install {package}",
        )

    def start_service(self, service: str) -> None:
        """Start *service* via systemctl."""
        self._privileged(
            [self.systemctl_bin, "start", service],
            error_prefix=f"{self.systemctl_bin} start {service}",
        )

    def enable_service(self, service: str) -> None:
        """Enable *service* at boot via systemctl."""
        self._privileged(
            [self.systemctl_bin, "enable", service],
            error_prefix=f"{self.systemctl_bin} enable {service}",
        )

    def add_user_to_group(self, user: str, group: str) -> None:
        """Append *group* to the supplementary groups of *user*."""
        self._privileged(
            ["usermod", "-aG", group, user],
            error_prefix=f"usermod -aG {group} {user}",
        )

    def make_dir(self, path: Path, mode: int = 0o755) -> None:
        """Create *path* (and parents) and apply *mode*."""
        try:
            path.mkdir(parents=True, exist_ok=True)
            os.chmod(path, mode)
        except OSError as exc:
            raise HostError(f"Failed to create directory {path}: {exc}") from exc

    def copy_tree(self, source: Path, destination: Path) -> None:
        """Copy *source* into *destination*, escalating with sudo on permission errors.

        ``shutil.copytree`` collects per-file failures into one ``shutil.Error``;
        any unreadable entry in that list triggers the privileged copy.
        """
        try:
            shutil.copytree(source, destination, symlinks=True, copy_function=shutil.copy2)
        except PermissionError:
            self._privileged_copy(source, destination)
        except shutil.Error as exc:
            if not _permission_denied(exc):
                shutil.rmtree(destination, ignore_errors=True)
                raise HostError(f"Failed to copy {source} to {destination}: {exc}") from exc
            self._privileged_copy(source, destination)
        except OSError as exc:
            raise HostError(f"Failed to copy {source} to {destination}: {exc}") from exc

    def remove_tree(self, path: Path) -> None:
        """Remove *path* recursively, escalating with sudo on permission errors."""
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except PermissionError:
            self._privileged(["rm", "-rf", str(path)], error_prefix=f"rm -rf {path}")
        except OSError as exc:
            raise HostError(f"Failed to remove {path}: {exc}") from exc

    def write_file(self, path: Path, text: str, *, mode: int) -> None:
        """Write *text* to *path*, creating parents, and apply *mode*."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            os.chmod(path, mode)
        except OSError as exc:
            raise HostError(f"Failed to write {path}: {exc}") from exc

    def remove_file(self, path: Path) -> None:
        """Remove *path* if it exists."""
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise HostError(f"Failed to remove {path}: {exc}") from exc

    # ------------------------------------------------------------------
    def _privileged_copy(self, source: Path, destination: Path) -> None:
        # cp -a recreates destination; drop the partial copy first
        shutil.rmtree(destination, ignore_errors=True)
        self._privileged(
            ["cp", "-a", str(source), str(destination)],
            error_prefix=f"cp -a {source}",
        )

    def _privileged(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        command = list(args) if self.is_root() else [self.sudo_bin, *args]
        return self._run_command(command, check=True, error_prefix=error_prefix)

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise HostError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise HostError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


def _permission_denied(exc: shutil.Error) -> bool:
    """Return True when any entry collected by copytree was an access failure."""
    entries = exc.args[0] if exc.args and isinstance(exc.args[0], list) else []
    for entry in entries:
        reason = str(entry[-1]) if isinstance(entry, tuple) and entry else str(entry)
        if any(f"[Errno {code}]" in reason for code in (errno.EACCES, errno.EPERM)):
            return True
    return False


__all__ = ["HostError", "HostProvider"]

"""Version tag resolution and the auxiliary state files in the working directory."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .errors import InvalidVersionTag, StateFileError
from .gate import ExecutionGate
from .providers.host import HostError, HostProvider

DEFAULT_CHANNEL = "stable"
CHANNELS = frozenset({"stable", "latest", "head"})
BOOTSTRAP_MARKER = "Bootstrap Password:"

_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_CHANNEL_SUFFIXES = ("-head",)


def validate_version_tag(tag: str) -> str:
    """Return *tag* when it is a channel name or a parseable release version."""
    candidate = tag.strip()
    if not _TAG_PATTERN.match(candidate):
        raise InvalidVersionTag(f"Invalid Rancher version tag: {tag!r}.")
    if candidate in CHANNELS:
        return candidate

    version_text = candidate[1:] if candidate[:1] in {"v", "V"} else candidate
    for suffix in _CHANNEL_SUFFIXES:
        if version_text.endswith(suffix):
            version_text = version_text[: -len(suffix)]
    try:
        Version(version_text)
    except InvalidVersion as exc:
        raise InvalidVersionTag(
            f"Invalid Rancher version tag: {tag!r}. Use a release such as v2.8.5 "
            f"or one of: {', '.join(sorted(CHANNELS))}."
        ) from exc
    return candidate


def resolve_version(requested: str | None) -> str:
    """Return the validated tag for *requested*, defaulting to the stable channel."""
    if requested is None or not requested.strip():
        return DEFAULT_CHANNEL
    return validate_version_tag(requested)


def extract_bootstrap_password(text: str) -> str | None:
    """Return the password from the last ``Bootstrap Password:`` line in *text*."""
    password: str | None = None
    for line in text.splitlines():
        if BOOTSTRAP_MARKER in line:
            value = line.split(BOOTSTRAP_MARKER, 1)[1].strip()
            if value:
                password = value
    return password


def bootstrap_lines(text: str) -> list[str]:
    """Return every log line carrying the bootstrap password marker."""
    return [line for line in text.splitlines() if BOOTSTRAP_MARKER in line]


@dataclass(slots=True)
class StateFiles:
    """The version cache and bootstrap credential files."""

    version_file: Path
    credential_file: Path
    host: HostProvider = field(default_factory=HostProvider)

    def record_version(self, gate: ExecutionGate, tag: str) -> None:
        """Persist *tag* to the version cache."""
        self._write(
            gate,
            f"record version {tag} in {self.version_file}",
            self.version_file,
            f"{tag}\n",
            mode=0o644,
        )

    def record_credential(self, gate: ExecutionGate, lines: list[str]) -> None:
        """Persist the bootstrap password *lines* to the credential file."""
        self._write(
            gate,
            f"save bootstrap password to {self.credential_file}",
            self.credential_file,
            "\n".join(lines) + "\n",
            mode=0o600,
        )

    def read_password(self) -> str | None:
        """Return the password stored in the credential file, if any."""
        try:
            text = self.credential_file.read_text(encoding="utf-8")
        except OSError:
            return None
        return extract_bootstrap_password(text)

    def remove(self, gate: ExecutionGate) -> list[Path]:
        """Remove the state files that exist; return the paths handled."""
        removed: list[Path] = []
        for path in (self.credential_file, self.version_file):
            if not path.exists():
                continue
            try:
                gate.perform(f"rm -f {path}", lambda path=path: self.host.remove_file(path))
            except HostError as exc:
                raise StateFileError(str(exc)) from exc
            removed.append(path)
        return removed

    def _write(
        self,
        gate: ExecutionGate,
        description: str,
        path: Path,
        text: str,
        *,
        mode: int,
    ) -> None:
        try:
            gate.perform(description, lambda: self.host.write_file(path, text, mode=mode))
        except HostError as exc:
            raise StateFileError(str(exc)) from exc


__all__ = [
    "BOOTSTRAP_MARKER",
    "CHANNELS",
    "DEFAULT_CHANNEL",
    "StateFiles",
    "bootstrap_lines",
    "extract_bootstrap_password",
    "resolve_version",
    "validate_version_tag",
]

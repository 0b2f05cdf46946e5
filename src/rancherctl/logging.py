"""Operation-scoped logging for rancherctl.

Every CLI invocation runs inside a single :class:`OperationScope`. Human
readable lines are appended to the lifecycle log (``[YYYY-mm-dd HH:MM:SS]
message``) and echoed to the console, while a structured JSON record of the
whole operation is appended to ``operations.jsonl`` beside the log file.

Logging never aborts a command: when the log location cannot be created or
written, the logger disables itself and keeps echoing to the console.
"""
from __future__ import annotations

import getpass
import json
import os
import secrets
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console

from . import __version__

OPERATIONS_LOG_NAME = "operations.jsonl"


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


def _actor() -> dict[str, object]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):  # pragma: no cover - depends on host passwd database
        user = "unknown"
    return {"user": user, "uid": os.geteuid() if hasattr(os, "geteuid") else None}


class StructuredLogger:
    """Write human and structured logs for rancherctl operations."""

    def __init__(self, log_file: Path, *, console: Console | None = None) -> None:
        """Prepare the log location; disable file output when it is unusable."""
        self.log_file = log_file
        self.console = console or Console()
        self._operations_log_path = log_file.parent / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return whether file logging is active."""
        return self._enabled

    @property
    def operations_log_path(self) -> Path:
        """Return the JSON-lines operations log path."""
        return self._operations_log_path

    def line(self, message: str, *, style: str | None = None) -> None:
        """Append *message* to the lifecycle log and echo it to the console."""
        stamped = f"[{_timestamp()}] {message}"
        self.console.print(stamped, style=style, markup=False, highlight=False, soft_wrap=True)
        self._append(self.log_file, stamped + "\n")

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist its record on exit."""
        scope = OperationScope(
            logger=self,
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
        )
        try:
            yield scope
        except BaseException as exc:
            if scope.status is None:
                scope.error(str(exc) or exc.__class__.__name__)
            raise
        finally:
            self._write_record(scope.to_record())

    def _write_record(self, record: Mapping[str, object]) -> None:
        payload = json.dumps(_json_safe(record), sort_keys=False)
        self._append(self._operations_log_path, payload + "\n")

    def _append(self, path: Path, text: str) -> None:
        if not self._enabled:
            return
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(text)
        except OSError:
            self._enabled = False


@dataclass
class OperationScope:
    """Collect steps, warnings and the final result of one operation."""

    logger: StructuredLogger
    command: str
    args: dict[str, object]
    target: dict[str, object]
    op_id: str = field(default_factory=lambda: secrets.token_hex(6))
    started: float = field(default_factory=time.monotonic)
    started_at: str = field(
        default_factory=lambda: datetime.now(tz=UTC).isoformat(timespec="seconds")
    )
    actor: dict[str, object] = field(default_factory=_actor)
    steps: list[dict[str, object]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    status: str | None = None
    result: dict[str, object] = field(default_factory=dict)

    def info(self, message: str) -> None:
        """Log an informational line."""
        self.logger.line(message)

    def warning(self, message: str) -> None:
        """Record an advisory warning without failing the operation."""
        self.warnings.append(message)
        self.logger.line(f"WARNING: {message}", style="yellow")

    def add_step(
        self,
        name: str,
        *,
        status: str = "success",
        detail: Mapping[str, object] | None = None,
    ) -> None:
        """Record a step in the operation trace."""
        entry: dict[str, object] = {"name": name, "status": status}
        if detail:
            entry["detail"] = dict(detail)
        self.steps.append(entry)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as finished successfully."""
        self.logger.line(message, style="green")
        self._finish(
            "warning" if self.warnings else "success",
            message,
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed and log an ``ERROR:`` line."""
        self.logger.line(f"ERROR: {message}", style="red")
        self._finish(
            "error",
            message,
            errors=list(errors or [message]),
            rc=rc,
            context=context,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        return {
            "timestamp": self.started_at,
            "op_id": self.op_id,
            "command": self.command,
            "args": self.args,
            "target": self.target,
            "actor": self.actor,
            "steps": self.steps,
            "result": self.result or {"status": self.status or "unknown"},
            "duration_ms": int((time.monotonic() - self.started) * 1000),
            "context": {"rancherctl_version": __version__},
        }

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        errors: Sequence[str] | None = None,
        backups: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.status = status
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(self.warnings),
            "errors": list(errors or []),
            "backups": list(backups or []),
            "context": _json_safe(dict(context or {})),
        }
        if rc is not None:
            result["rc"] = rc
        self.result = result


__all__ = ["OPERATIONS_LOG_NAME", "OperationScope", "StructuredLogger"]

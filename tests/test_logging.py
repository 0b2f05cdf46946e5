"""Tests for the structured logging subsystem."""
from __future__ import annotations

import io
import json
import re
from pathlib import Path

import pytest
from rich.console import Console

from rancherctl.logging import StructuredLogger


def _logger(log_file: Path) -> StructuredLogger:
    return StructuredLogger(log_file, console=Console(file=io.StringIO(), width=200))


def test_lines_are_timestamped_and_appended(tmp_path: Path) -> None:
    """Human log lines carry a timestamp prefix and accumulate across runs."""
    log_file = tmp_path / "logs" / "rancher.log"

    for message in ("first", "second"):
        with _logger(log_file).operation("demo") as op:
            op.info(message)
            op.success("done")

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] first$", lines[0])
    assert lines[-1].endswith("] done")
    assert len(lines) == 4


def test_operation_record_is_written(tmp_path: Path) -> None:
    """Each operation appends one JSON record beside the log file."""
    logger = _logger(tmp_path / "rancher.log")

    with logger.operation("rancherctl", args={"data_dir": tmp_path}, target={"name": "x"}) as op:
        op.add_step("docker pull rancher/rancher:stable")
        op.warning("offline")
        op.success("Action 'install' completed successfully", changed=1, backups=["a.tar.gz"])

    record = json.loads(logger.operations_log_path.read_text(encoding="utf-8"))
    assert record["command"] == "rancherctl"
    assert record["args"] == {"data_dir": str(tmp_path)}
    assert record["steps"] == [{"name": "docker pull rancher/rancher:stable", "status": "success"}]
    assert record["result"]["status"] == "warning"
    assert record["result"]["warnings"] == ["offline"]
    assert record["result"]["backups"] == ["a.tar.gz"]
    assert "rancherctl_version" in record["context"]


def test_error_writes_error_line_and_rc(tmp_path: Path) -> None:
    """Errors log an ERROR line and record the return code."""
    logger = _logger(tmp_path / "rancher.log")

    with logger.operation("demo") as op:
        op.error("boom", rc=4, context={"value": {1, 2}})

    assert "ERROR: boom" in (tmp_path / "rancher.log").read_text(encoding="utf-8")
    record = json.loads(logger.operations_log_path.read_text(encoding="utf-8"))
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["boom"]
    assert record["result"]["rc"] == 4
    assert record["result"]["context"] == {"value": "{1, 2}"}


def test_unhandled_exception_is_recorded(tmp_path: Path) -> None:
    """Exceptions escaping the scope are recorded as errors and re-raised."""
    logger = _logger(tmp_path / "rancher.log")

    with pytest.raises(ValueError):
        with logger.operation("demo"):
            raise ValueError("unexpected")

    record = json.loads(logger.operations_log_path.read_text(encoding="utf-8"))
    assert record["result"]["status"] == "error"
    assert record["result"]["message"] == "unexpected"


def test_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when the log directory cannot be created."""
    log_dir = tmp_path / "logs"
    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = _logger(log_dir / "rancher.log")
    assert logger.enabled is False

    with logger.operation("demo") as op:
        op.success("done")


def test_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so later writes are skipped."""
    logger = _logger(tmp_path / "rancher.log")
    operations_path = logger.operations_log_path
    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done")

    assert logger.enabled is False

    with logger.operation("demo-2") as op:
        op.success("done")

"""Execution gate that routes every mutation through dry-run handling."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from .logging import OperationScope

T = TypeVar("T")


class ExecutionMode(str, Enum):
    """Whether mutations are performed or only described."""

    REAL = "real"
    DRY_RUN = "dry_run"


@dataclass(slots=True, frozen=True)
class GateOutcome(Generic[T]):
    """Result of a gated mutation."""

    executed: bool
    value: T | None = None


@dataclass(slots=True)
class ExecutionGate:
    """Perform or describe mutations depending on :class:`ExecutionMode`."""

    op: OperationScope
    mode: ExecutionMode = ExecutionMode.REAL

    @property
    def dry_run(self) -> bool:
        """Return True when mutations are only described."""
        return self.mode is ExecutionMode.DRY_RUN

    def perform(self, description: str, action: Callable[[], T]) -> GateOutcome[T]:
        """Run *action* in real mode, or log what would run in dry-run mode."""
        if self.dry_run:
            self.op.info(f"[DRY-RUN] Would execute: {description}")
            self.op.add_step(description, status="skipped", detail={"dry_run": True})
            return GateOutcome(executed=False)

        self.op.info(f"Executing: {description}")
        try:
            value = action()
        except Exception as exc:
            self.op.add_step(description, status="error", detail={"error": str(exc)})
            raise
        self.op.add_step(description)
        return GateOutcome(executed=True, value=value)


__all__ = ["ExecutionGate", "ExecutionMode", "GateOutcome"]

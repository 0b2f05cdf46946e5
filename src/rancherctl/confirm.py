"""Confirmation providers used before destructive steps."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import typer


class Confirmer(Protocol):
    """Answer yes/no questions before destructive steps."""

    def confirm(self, prompt: str, *, forced_answer: bool) -> bool: ...


@dataclass(slots=True)
class PromptConfirmer:
    """Ask the operator interactively; the default answer is always no."""

    def confirm(self, prompt: str, *, forced_answer: bool) -> bool:
        """Prompt on the terminal and return the operator's answer."""
        try:
            return typer.confirm(prompt, default=False)
        except typer.Abort:
            # EOF on stdin counts as the default answer.
            return False


@dataclass(slots=True)
class ForcedConfirmer:
    """Answer every question with the forced answer without prompting."""

    def confirm(self, prompt: str, *, forced_answer: bool) -> bool:
        """Return *forced_answer*."""
        return forced_answer


def confirmer_for(force: bool) -> Confirmer:
    """Return the confirmer matching the ``--force`` flag."""
    return ForcedConfirmer() if force else PromptConfirmer()


__all__ = ["Confirmer", "ForcedConfirmer", "PromptConfirmer", "confirmer_for"]

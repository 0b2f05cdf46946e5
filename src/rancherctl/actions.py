"""Resolve requested action flags into a single lifecycle action."""
from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from .errors import InvalidActionCombination, NoActionSpecified


class Action(str, Enum):
    """Lifecycle actions understood by the controller."""

    INSTALL = "install"
    START = "start"
    STOP = "stop"
    UPGRADE = "upgrade"
    CLEANUP = "cleanup"
    VERIFY = "verify"
    STATUS = "status"
    REBUILD = "rebuild"
    INSTALL_AND_START = "install_and_start"

    @property
    def mutating(self) -> bool:
        """Return True when the action changes the container or host."""
        return self not in {Action.VERIFY, Action.STATUS}


FLAG_ACTIONS = frozenset(
    action for action in Action if action is not Action.INSTALL_AND_START
)


def resolve_action(flags: Iterable[Action | str]) -> Action:
    """Return the single action implied by *flags*.

    ``install`` combined with ``start`` is the only supported combination and
    resolves to :attr:`Action.INSTALL_AND_START`.
    """
    requested: set[Action] = set()
    for flag in flags:
        action = Action(flag)
        if action not in FLAG_ACTIONS:
            raise InvalidActionCombination(f"'{action.value}' is not a selectable action flag.")
        requested.add(action)

    if not requested:
        raise NoActionSpecified(
            "No action specified. Use --help to see available actions."
        )
    if len(requested) == 1:
        return next(iter(requested))
    if requested == {Action.INSTALL, Action.START}:
        return Action.INSTALL_AND_START

    names = ", ".join(f"--{action.value}" for action in sorted(requested, key=lambda a: a.value))
    raise InvalidActionCombination(
        f"Invalid combination of actions: {names}. Only --install and --start may be combined."
    )


__all__ = ["Action", "FLAG_ACTIONS", "resolve_action"]

"""Declarative state machines for request workflows.

Each workflow lists its legal transitions as data; ``advance`` is the only
way services move a request between states, so an illegal move is rejected
in one place instead of by scattered ``if status != ...`` checks.
"""

from __future__ import annotations

import enum
from typing import Generic, Mapping, TypeVar

from hr_ledger.common.constants import LeaveStatus, RegularizationStatus
from hr_ledger.common.exceptions import AlreadyResolved, InvalidTransition

S = TypeVar("S", bound=enum.Enum)


class StateMachine(Generic[S]):
    """Transition table for one entity type."""

    def __init__(self, entity: str, transitions: Mapping[S, frozenset[S]]) -> None:
        self.entity = entity
        self._transitions = dict(transitions)

    def targets(self, state: S) -> frozenset[S]:
        return self._transitions.get(state, frozenset())

    def is_terminal(self, state: S) -> bool:
        return not self.targets(state)

    def can_advance(self, current: S, target: S) -> bool:
        return target in self.targets(current)

    def advance(self, current: S, target: S) -> S:
        """Return *target* if the move is legal, else raise.

        Terminal sources and repeats of the current state raise
        ``AlreadyResolved``; other illegal moves raise ``InvalidTransition``.
        """
        if self.can_advance(current, target):
            return target
        if self.is_terminal(current) or current == target:
            raise AlreadyResolved(self.entity, current.value)
        raise InvalidTransition(self.entity, current.value, target.value)


REGULARIZATION_WORKFLOW: StateMachine[RegularizationStatus] = StateMachine(
    "Correction request",
    {
        RegularizationStatus.pending: frozenset(
            {RegularizationStatus.approved, RegularizationStatus.rejected}
        ),
    },
)

LEAVE_WORKFLOW: StateMachine[LeaveStatus] = StateMachine(
    "Leave request",
    {
        LeaveStatus.pending: frozenset(
            {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
        ),
        LeaveStatus.approved: frozenset({LeaveStatus.cancelled}),
    },
)

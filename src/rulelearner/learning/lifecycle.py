"""Rule lifecycle state machine.

A rule moves generated -> validated -> evaluated and ends in exactly one
terminal state. Only terminal states are persisted, each as a directory in
the rule store; the intermediate states exist only in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from rulelearner.core.errors import InvalidTransitionError
from rulelearner.core.models import ApprovalAction, utc_now_iso


class RuleState(str, Enum):
    GENERATED = "generated"
    VALIDATED = "validated"
    EVALUATED = "evaluated"
    APPROVED = "approved"
    MANUAL_REVIEW = "manual_review"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RuleState.APPROVED, RuleState.MANUAL_REVIEW, RuleState.REJECTED})

TRANSITIONS: dict[RuleState, frozenset[RuleState]] = {
    RuleState.GENERATED: frozenset({RuleState.VALIDATED, RuleState.REJECTED}),
    RuleState.VALIDATED: frozenset({RuleState.EVALUATED, RuleState.REJECTED}),
    RuleState.EVALUATED: frozenset(
        {RuleState.APPROVED, RuleState.MANUAL_REVIEW, RuleState.REJECTED}
    ),
    RuleState.APPROVED: frozenset(),
    RuleState.MANUAL_REVIEW: frozenset(),
    RuleState.REJECTED: frozenset(),
}

# Persisted location of each terminal state
STATE_DIRECTORIES: dict[RuleState, str] = {
    RuleState.APPROVED: "approved",
    RuleState.MANUAL_REVIEW: "manual_review",
    RuleState.REJECTED: "issues",
}

ACTION_STATES: dict[ApprovalAction, RuleState] = {
    ApprovalAction.APPROVE: RuleState.APPROVED,
    ApprovalAction.MANUAL_REVIEW: RuleState.MANUAL_REVIEW,
    ApprovalAction.REJECT: RuleState.REJECTED,
}


@dataclass
class RuleLifecycle:
    """Tracks one rule's state and the transitions it went through."""

    rule_id: str
    state: RuleState = RuleState.GENERATED
    history: list[tuple[RuleState, str]] = field(default_factory=list)

    def can_transition(self, target: RuleState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: RuleState) -> RuleState:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state.
        """
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Rule {self.rule_id}: cannot move from {self.state.value} to {target.value}"
            )
        self.history.append((self.state, utc_now_iso()))
        self.state = target
        return target

    def apply_decision(self, action: ApprovalAction) -> RuleState:
        return self.transition(ACTION_STATES[action])

    @property
    def directory(self) -> str | None:
        """Store directory for a terminal state, None while in memory only."""
        return STATE_DIRECTORIES.get(self.state)

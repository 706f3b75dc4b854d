"""
Session and task state machines.

Both are explicit transition tables. transition() is the pure lookup and
returns (new_state, error); apply() raises. Nothing here touches the
store: callers persist the result with a status-scoped update.
"""

from enum import StrEnum

from focuslock.errors import InvalidTransition
from focuslock.models import SessionStatus, TaskStatus


class SessionEvent(StrEnum):
    LOCK_CONFIRMED = "LOCK_CONFIRMED"
    DURATION_ELAPSED = "DURATION_ELAPSED"
    UNLOCK_REQUESTED = "UNLOCK_REQUESTED"
    PROOF_ACCEPTED = "PROOF_ACCEPTED"
    PROOF_REJECTED = "PROOF_REJECTED"
    FAILURE = "FAILURE"


_NON_TERMINAL = (SessionStatus.PENDING, SessionStatus.LOCKED, SessionStatus.PROOF_REQUIRED)

SESSION_TRANSITIONS: dict[tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (SessionStatus.PENDING, SessionEvent.LOCK_CONFIRMED): SessionStatus.LOCKED,
    (SessionStatus.LOCKED, SessionEvent.DURATION_ELAPSED): SessionStatus.PROOF_REQUIRED,
    (SessionStatus.LOCKED, SessionEvent.UNLOCK_REQUESTED): SessionStatus.PROOF_REQUIRED,
    (SessionStatus.PROOF_REQUIRED, SessionEvent.PROOF_ACCEPTED): SessionStatus.UNLOCKED,
    # A rejected proof is recorded but leaves the session where it is
    (SessionStatus.PROOF_REQUIRED, SessionEvent.PROOF_REJECTED): SessionStatus.PROOF_REQUIRED,
    **{(state, SessionEvent.FAILURE): SessionStatus.FAILED for state in _NON_TERMINAL},
}

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ACTIVE, TaskStatus.FAILED}),
    TaskStatus.ACTIVE: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

# Owner status patch: which event produces the requested target status
_PATCH_EVENTS: dict[SessionStatus, SessionEvent] = {
    SessionStatus.LOCKED: SessionEvent.LOCK_CONFIRMED,
    SessionStatus.PROOF_REQUIRED: SessionEvent.UNLOCK_REQUESTED,
    SessionStatus.FAILED: SessionEvent.FAILURE,
}


def transition(
    state: SessionStatus, event: SessionEvent
) -> tuple[SessionStatus, InvalidTransition | None]:
    """Look up the next session state. On a miss the state is unchanged."""
    nxt = SESSION_TRANSITIONS.get((state, event))
    if nxt is None:
        return state, InvalidTransition(
            state.value, message=f"Event {event.value} not allowed in session state {state.value}"
        )
    return nxt, None


def apply(state: SessionStatus, event: SessionEvent) -> SessionStatus:
    nxt, error = transition(state, event)
    if error is not None:
        raise error
    return nxt


def event_for_target(current: SessionStatus, target: SessionStatus) -> SessionEvent:
    """
    Map an owner-requested target status onto the event that produces it.

    UNLOCKED is never reachable this way; it takes an accepted proof.
    """
    event = _PATCH_EVENTS.get(target)
    if event is None:
        raise InvalidTransition(
            current.value,
            target.value,
            message=f"Session status {target.value} cannot be set directly",
        )
    _, error = transition(current, event)
    if error is not None:
        raise InvalidTransition(current.value, target.value) from error
    return event


def can_transition_task(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_TRANSITIONS[current]


def check_task_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Raise InvalidTransition unless current -> target is a forward move."""
    if not can_transition_task(current, target):
        raise InvalidTransition(current.value, target.value)

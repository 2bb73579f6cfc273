"""
Incident Lifecycle
Status state machine: which transitions are allowed and who may make them.
"""
from typing import Dict, FrozenSet, Optional

from core import Actor, IncidentStatus, InvalidTransitionError, config


TERMINAL_STATUSES: FrozenSet[IncidentStatus] = frozenset({
    IncidentStatus.RESOLVED,
    IncidentStatus.AUTO_RESOLVED,
})

ACTIVE_STATUSES: FrozenSet[IncidentStatus] = frozenset({
    IncidentStatus.OPEN,
    IncidentStatus.INVESTIGATING,
})

ALLOWED_TRANSITIONS: Dict[IncidentStatus, FrozenSet[IncidentStatus]] = {
    IncidentStatus.OPEN: frozenset({
        IncidentStatus.INVESTIGATING,
        IncidentStatus.RESOLVED,
        IncidentStatus.AUTO_RESOLVED,
    }),
    IncidentStatus.INVESTIGATING: frozenset({
        IncidentStatus.OPEN,
        IncidentStatus.RESOLVED,
        IncidentStatus.AUTO_RESOLVED,
    }),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.AUTO_RESOLVED: frozenset(),
}


def is_terminal(status: IncidentStatus) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(
    current: IncidentStatus,
    target: IncidentStatus,
    actor: Actor,
    enforce: Optional[bool] = None
) -> None:
    """
    Raise InvalidTransitionError if `actor` may not move an incident from
    `current` to `target`.

    Auto-resolution is reserved for the system actor in every mode. With
    enforcement off, any other explicit update is accepted.
    """
    if enforce is None:
        enforce = config.ENFORCE_STATUS_TRANSITIONS

    if target == IncidentStatus.AUTO_RESOLVED and actor != Actor.SYSTEM:
        raise InvalidTransitionError(current.value, target.value, "only the system can auto-resolve")

    if not enforce:
        return

    if current == target:
        raise InvalidTransitionError(current.value, target.value, "incident already has this status")

    if is_terminal(current):
        raise InvalidTransitionError(current.value, target.value, "incident is already closed out")

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)

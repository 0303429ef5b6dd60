"""Marksheet dispatch lifecycle.

The transition table is the single authority on which status a marksheet may
move to for a given event. Services use :func:`sources_for` to build
compare-and-set updates (``WHERE status IN sources``) so that a concurrent
change of status makes the update match nothing instead of overwriting it.
"""

import enum

from app.core.exceptions import InvalidTransitionError, ValidationError
from app.models.marksheet import HodResponse, MarksheetStatus


class LifecycleEvent(str, enum.Enum):
    """Triggers that move a marksheet through its lifecycle."""

    VERIFY = "verify"
    EDIT_SUBJECTS = "edit_subjects"
    REQUEST_DISPATCH = "request_dispatch"
    HOD_APPROVE = "hod_approve"
    HOD_REJECT = "hod_reject"
    HOD_RESCHEDULE = "hod_reschedule"
    DISPATCH = "dispatch"


S = MarksheetStatus

TRANSITIONS: dict[LifecycleEvent, tuple[frozenset[MarksheetStatus], MarksheetStatus]] = {
    LifecycleEvent.VERIFY: (frozenset({S.DRAFT}), S.VERIFIED_BY_STAFF),
    LifecycleEvent.EDIT_SUBJECTS: (
        frozenset({S.DRAFT, S.VERIFIED_BY_STAFF, S.REJECTED_BY_HOD}),
        S.DRAFT,
    ),
    LifecycleEvent.REQUEST_DISPATCH: (frozenset({S.VERIFIED_BY_STAFF}), S.DISPATCH_REQUESTED),
    LifecycleEvent.HOD_APPROVE: (frozenset({S.DISPATCH_REQUESTED}), S.APPROVED_BY_HOD),
    LifecycleEvent.HOD_REJECT: (frozenset({S.DISPATCH_REQUESTED}), S.REJECTED_BY_HOD),
    LifecycleEvent.HOD_RESCHEDULE: (frozenset({S.DISPATCH_REQUESTED}), S.RESCHEDULED_BY_HOD),
    LifecycleEvent.DISPATCH: (
        frozenset({S.APPROVED_BY_HOD, S.RESCHEDULED_BY_HOD, S.DISPATCHED}),
        S.DISPATCHED,
    ),
}

# Statuses the transport may be invoked for (re-sending is allowed)
DISPATCHABLE_STATUSES = TRANSITIONS[LifecycleEvent.DISPATCH][0]

HOD_RESPONSE_EVENTS = {
    HodResponse.APPROVED: LifecycleEvent.HOD_APPROVE,
    HodResponse.REJECTED: LifecycleEvent.HOD_REJECT,
    HodResponse.RESCHEDULED: LifecycleEvent.HOD_RESCHEDULE,
}


def sources_for(event: LifecycleEvent) -> frozenset[MarksheetStatus]:
    """Statuses from which ``event`` is legal."""
    return TRANSITIONS[event][0]


def can_transition(current: MarksheetStatus, event: LifecycleEvent) -> bool:
    return current in sources_for(event)


def next_status(current: MarksheetStatus, event: LifecycleEvent) -> MarksheetStatus:
    """Return the target status or raise InvalidTransitionError."""
    sources, target = TRANSITIONS[event]
    if current not in sources:
        raise InvalidTransitionError(MarksheetStatus(current).value, event.value)
    return target


def parse_status(value: str) -> MarksheetStatus:
    """Parse a status string at the API boundary; unknown values are rejected."""
    try:
        return MarksheetStatus(value.strip())
    except ValueError:
        raise ValidationError(
            f"Unknown marksheet status '{value}'",
            details={"allowed": [s.value for s in MarksheetStatus]},
        )


def parse_statuses(raw: str | None) -> list[MarksheetStatus]:
    """Parse a comma-separated status filter."""
    if not raw:
        return []
    return [parse_status(part) for part in raw.split(",") if part.strip()]

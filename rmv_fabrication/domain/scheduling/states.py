"""Appointment state machine"""

from ...models import APPOINTMENT_TERMINAL_STATUSES

# pending → scheduled → confirmed → in_progress → completed
# any non-terminal state → cancelled | no_show
APPOINTMENT_TRANSITIONS = {
    "pending": {"scheduled", "cancelled", "no_show"},
    "scheduled": {"confirmed", "in_progress", "completed", "cancelled", "no_show"},
    "confirmed": {"in_progress", "completed", "cancelled", "no_show"},
    "in_progress": {"completed", "cancelled", "no_show"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}


def is_terminal(status: str) -> bool:
    return status in APPOINTMENT_TERMINAL_STATUSES


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in APPOINTMENT_TRANSITIONS.get(current_status, set())

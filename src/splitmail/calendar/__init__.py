"""iCalendar handling and the invitation workflow."""

from .ics import (
    DEFAULT_PARTSTAT,
    RsvpStatus,
    generate_rsvp,
    parse_ics,
    unfold_lines,
    update_partstat,
)
from .invitations import InvitationService

__all__ = [
    "DEFAULT_PARTSTAT",
    "InvitationService",
    "RsvpStatus",
    "generate_rsvp",
    "parse_ics",
    "unfold_lines",
    "update_partstat",
]

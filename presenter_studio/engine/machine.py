"""Stage state machine: a pure transition table."""

from enum import Enum

from ..errors import InvalidTransition
from ..models.stage import StageStatus


class Event(Enum):
    START = "start"                          # begin an attempt
    GENERATED = "generated"                  # candidate produced and registered
    GENERATION_FAILED = "generation_failed"  # produce step failed, no review
    ACCEPT = "accept"
    REJECT = "reject"
    EXHAUST = "exhaust"                      # budget spent or deadline expired
    FALL_BACK = "fall_back"


TRANSITIONS: dict[tuple[StageStatus, Event], StageStatus] = {
    (StageStatus.PENDING, Event.START): StageStatus.GENERATING,
    (StageStatus.REJECTED, Event.START): StageStatus.GENERATING,
    (StageStatus.GENERATING, Event.GENERATED): StageStatus.REVIEWING,
    (StageStatus.GENERATING, Event.GENERATION_FAILED): StageStatus.REJECTED,
    (StageStatus.REVIEWING, Event.ACCEPT): StageStatus.ACCEPTED,
    (StageStatus.REVIEWING, Event.REJECT): StageStatus.REJECTED,
    (StageStatus.PENDING, Event.EXHAUST): StageStatus.EXHAUSTED,
    (StageStatus.REJECTED, Event.EXHAUST): StageStatus.EXHAUSTED,
    (StageStatus.EXHAUSTED, Event.FALL_BACK): StageStatus.FALLBACK,
}


def advance(status: StageStatus, event: Event) -> StageStatus:
    """Next status for (status, event).

    Raises:
        InvalidTransition: If the event is not valid in this status.
    """
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value} is not valid in state {status.value}") from None

"""Book lifecycle transitions."""

from enum import Enum

from pustakam.errors import InvalidTransitionError
from pustakam.models.book import BookStatus


class GenerationEvent(str, Enum):
    START_ROADMAP = "start_roadmap"
    ROADMAP_READY = "roadmap_ready"
    START_CONTENT = "start_content"
    CONTENT_DONE = "content_done"
    ASSEMBLED = "assembled"
    ASSEMBLED_WITH_GAPS = "assembled_with_gaps"
    REGENERATE = "regenerate"
    FAIL = "fail"


_TRANSITIONS: dict[tuple[BookStatus, GenerationEvent], BookStatus] = {
    (BookStatus.PLANNING, GenerationEvent.START_ROADMAP): BookStatus.GENERATING_ROADMAP,
    (BookStatus.ERROR, GenerationEvent.START_ROADMAP): BookStatus.GENERATING_ROADMAP,
    (BookStatus.ROADMAP_COMPLETED, GenerationEvent.START_ROADMAP): BookStatus.GENERATING_ROADMAP,
    # Resume after an interrupted roadmap call
    (BookStatus.GENERATING_ROADMAP, GenerationEvent.START_ROADMAP): BookStatus.GENERATING_ROADMAP,
    (BookStatus.GENERATING_ROADMAP, GenerationEvent.ROADMAP_READY): BookStatus.ROADMAP_COMPLETED,
    (BookStatus.ROADMAP_COMPLETED, GenerationEvent.START_CONTENT): BookStatus.GENERATING_CONTENT,
    (BookStatus.GENERATING_CONTENT, GenerationEvent.START_CONTENT): BookStatus.GENERATING_CONTENT,
    (BookStatus.ERROR, GenerationEvent.START_CONTENT): BookStatus.GENERATING_CONTENT,
    (BookStatus.COMPLETED_WITH_GAPS, GenerationEvent.START_CONTENT): BookStatus.GENERATING_CONTENT,
    (BookStatus.GENERATING_CONTENT, GenerationEvent.CONTENT_DONE): BookStatus.ASSEMBLING,
    (BookStatus.ASSEMBLING, GenerationEvent.CONTENT_DONE): BookStatus.ASSEMBLING,
    (BookStatus.ASSEMBLING, GenerationEvent.ASSEMBLED): BookStatus.COMPLETED,
    (BookStatus.ASSEMBLING, GenerationEvent.ASSEMBLED_WITH_GAPS): BookStatus.COMPLETED_WITH_GAPS,
    (BookStatus.COMPLETED, GenerationEvent.REGENERATE): BookStatus.GENERATING_CONTENT,
    (BookStatus.COMPLETED_WITH_GAPS, GenerationEvent.REGENERATE): BookStatus.GENERATING_CONTENT,
    (BookStatus.ERROR, GenerationEvent.REGENERATE): BookStatus.GENERATING_CONTENT,
}

TERMINAL_STATUSES = frozenset({BookStatus.COMPLETED, BookStatus.COMPLETED_WITH_GAPS})


def transition(status: BookStatus, event: GenerationEvent) -> BookStatus:
    """Return the status reached from ``status`` on ``event``.

    ``FAIL`` is accepted from every non-terminal status.

    Raises:
        InvalidTransitionError: If the event is not allowed in ``status``.
    """
    if event == GenerationEvent.FAIL and status not in TERMINAL_STATUSES:
        return BookStatus.ERROR
    try:
        return _TRANSITIONS[(BookStatus(status), event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot apply {event.value} to a book in status {BookStatus(status).value}"
        ) from None


def can_transition(status: BookStatus, event: GenerationEvent) -> bool:
    try:
        transition(status, event)
    except InvalidTransitionError:
        return False
    return True

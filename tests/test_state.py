"""Tests for book lifecycle transitions."""

import pytest

from pustakam.errors import InvalidTransitionError
from pustakam.generation.state import GenerationEvent, can_transition, transition
from pustakam.models import BookStatus


class TestHappyPath:
    def test_full_lifecycle(self) -> None:
        status = BookStatus.PLANNING
        for event, expected in [
            (GenerationEvent.START_ROADMAP, BookStatus.GENERATING_ROADMAP),
            (GenerationEvent.ROADMAP_READY, BookStatus.ROADMAP_COMPLETED),
            (GenerationEvent.START_CONTENT, BookStatus.GENERATING_CONTENT),
            (GenerationEvent.CONTENT_DONE, BookStatus.ASSEMBLING),
            (GenerationEvent.ASSEMBLED, BookStatus.COMPLETED),
        ]:
            status = transition(status, event)
            assert status == expected

    def test_assembled_with_gaps(self) -> None:
        assert transition(BookStatus.ASSEMBLING, GenerationEvent.ASSEMBLED_WITH_GAPS) == BookStatus.COMPLETED_WITH_GAPS


class TestFailAndRecovery:
    @pytest.mark.parametrize(
        "status",
        [
            BookStatus.PLANNING,
            BookStatus.GENERATING_ROADMAP,
            BookStatus.ROADMAP_COMPLETED,
            BookStatus.GENERATING_CONTENT,
            BookStatus.ASSEMBLING,
            BookStatus.ERROR,
        ],
    )
    def test_fail_from_non_terminal(self, status: BookStatus) -> None:
        assert transition(status, GenerationEvent.FAIL) == BookStatus.ERROR

    @pytest.mark.parametrize("status", [BookStatus.COMPLETED, BookStatus.COMPLETED_WITH_GAPS])
    def test_fail_from_terminal_rejected(self, status: BookStatus) -> None:
        with pytest.raises(InvalidTransitionError):
            transition(status, GenerationEvent.FAIL)

    def test_error_can_restart_roadmap_or_content(self) -> None:
        assert transition(BookStatus.ERROR, GenerationEvent.START_ROADMAP) == BookStatus.GENERATING_ROADMAP
        assert transition(BookStatus.ERROR, GenerationEvent.START_CONTENT) == BookStatus.GENERATING_CONTENT

    def test_resume_interrupted_states(self) -> None:
        assert transition(BookStatus.GENERATING_ROADMAP, GenerationEvent.START_ROADMAP) == BookStatus.GENERATING_ROADMAP
        assert transition(BookStatus.GENERATING_CONTENT, GenerationEvent.START_CONTENT) == BookStatus.GENERATING_CONTENT

    def test_regenerate_from_finished(self) -> None:
        assert transition(BookStatus.COMPLETED, GenerationEvent.REGENERATE) == BookStatus.GENERATING_CONTENT
        assert transition(BookStatus.COMPLETED_WITH_GAPS, GenerationEvent.REGENERATE) == BookStatus.GENERATING_CONTENT


class TestInvalidTransitions:
    def test_content_before_roadmap(self) -> None:
        with pytest.raises(InvalidTransitionError):
            transition(BookStatus.PLANNING, GenerationEvent.START_CONTENT)

    def test_restart_roadmap_from_completed(self) -> None:
        assert can_transition(BookStatus.COMPLETED, GenerationEvent.START_ROADMAP) is False

    def test_assemble_while_generating(self) -> None:
        assert can_transition(BookStatus.GENERATING_CONTENT, GenerationEvent.ASSEMBLED) is False

    def test_error_message_names_status(self) -> None:
        with pytest.raises(InvalidTransitionError, match="planning"):
            transition(BookStatus.PLANNING, GenerationEvent.ASSEMBLED)

"""
Tests for the hard-first mastery engine.
"""

from dataclasses import replace

import pytest

from lessoncore.exceptions import QuizStateError
from lessoncore.quiz.mastery_engine import (
    advance,
    build_cascade,
    progress,
    start_quiz,
    submit_answer,
    summarize,
)
from lessoncore.quiz.models import (
    EASY_TIER,
    HARD_TIER,
    MEDIUM_TIER,
    ConceptPhase,
    QuizModule,
    QuizState,
)


def answer(state, module, is_correct):
    """Submit and advance in one step."""
    return advance(submit_answer(state, module, is_correct))


@pytest.fixture
def single_concept_module(adaptive_module):
    return replace(
        adaptive_module,
        concept_variants=adaptive_module.concept_variants[:1],
    )


class TestStartQuiz:
    def test_adaptive_queue_is_hard_first(self, adaptive_module):
        state = start_quiz(adaptive_module)

        assert [q.question.id for q in state.queue] == ["c1-hard", "c2-hard"]
        assert all(q.is_initial_hard_test and q.tier == HARD_TIER for q in state.queue)
        assert state.concept_ids == ("c1", "c2")
        assert set(state.phases.values()) == {ConceptPhase.UNTESTED}
        assert state.current_index == 0
        assert not state.completed

    def test_legacy_queue(self, legacy_module):
        state = start_quiz(legacy_module)

        assert [q.concept_id for q in state.queue] == ["q1", "q2"]
        assert all(q.tier == HARD_TIER and q.is_initial_hard_test for q in state.queue)

    def test_empty_module_is_complete_immediately(self):
        state = start_quiz(QuizModule(module_id="empty", lesson_id="l"))

        assert state.completed
        assert state.queue == ()
        assert progress(state) == 0.0

    def test_each_session_has_its_own_id(self, adaptive_module):
        first = start_quiz(adaptive_module)
        second = start_quiz(adaptive_module)

        assert first.session_id and second.session_id
        assert first.session_id != second.session_id
        assert submit_answer(first, adaptive_module, True).session_id == first.session_id

    def test_concept_without_hard_question_is_skipped(self, adaptive_module):
        broken = replace(
            adaptive_module,
            questions=tuple(q for q in adaptive_module.questions if q.id != "c2-hard"),
        )
        state = start_quiz(broken)

        assert [q.question.id for q in state.queue] == ["c1-hard"]


class TestPenaltyCascade:
    def test_single_concept_walkthrough(self, single_concept_module):
        module = single_concept_module
        state = start_quiz(module)
        assert len(state.queue) == 1

        state = submit_answer(state, module, False)
        assert len(state.queue) == 4
        assert [q.tier for q in state.queue[1:]] == [EASY_TIER, MEDIUM_TIER, HARD_TIER]
        assert [q.cascade_position for q in state.queue[1:]] == [0, 1, 2]
        assert all(q.is_penalty for q in state.queue[1:])
        assert state.phases["c1"] == ConceptPhase.IN_CASCADE
        state = advance(state)

        # Wrong easy and medium inject nothing
        state = answer(state, module, False)
        assert len(state.queue) == 4
        state = answer(state, module, False)
        assert len(state.queue) == 4
        assert not state.results["c1"].mastered

        state = submit_answer(state, module, True)
        assert state.results["c1"].mastered
        assert state.results["c1"].hard_retry_correct is True
        assert state.phases["c1"] == ConceptPhase.MASTERED

        state = advance(state)
        assert state.completed
        assert state.all_mastered

    def test_correct_initial_hard_masters_immediately(self, single_concept_module):
        state = submit_answer(start_quiz(single_concept_module), single_concept_module, True)

        assert state.results["c1"].mastered
        assert state.results["c1"].hard_attempt_correct is True
        assert not state.results["c1"].cascade_triggered
        assert len(state.queue) == 1

    def test_easy_and_medium_never_master(self, single_concept_module):
        module = single_concept_module
        state = answer(start_quiz(module), module, False)
        state = answer(state, module, True)
        state = submit_answer(state, module, True)

        assert state.results["c1"].easy_correct is True
        assert state.results["c1"].medium_correct is True
        assert not state.results["c1"].mastered
        assert state.phases["c1"] == ConceptPhase.IN_CASCADE

    def test_failed_hard_retry_requeues_only_the_retry(self, single_concept_module):
        module = single_concept_module
        state = answer(start_quiz(module), module, False)
        state = answer(state, module, True)
        state = answer(state, module, True)

        for expected_length in (5, 6, 7):
            state = answer(state, module, False)
            assert len(state.queue) == expected_length
            assert state.queue[-1].tier == HARD_TIER
            assert state.queue[-1].is_penalty
            assert not state.completed

        easy_items = [q for q in state.queue if q.tier == EASY_TIER]
        assert len(easy_items) == 1
        assert state.results["c1"].cascade_triggered

        state = answer(state, module, True)
        assert state.completed
        assert state.results["c1"].mastered

    def test_missing_medium_uses_hard_stand_in(self, adaptive_module):
        concept = adaptive_module.get_concept("c2")
        cascade = build_cascade(adaptive_module, concept)

        assert [q.question.id for q in cascade] == ["c2-easy", "c2-hard", "c2-hard"]
        assert [q.tier for q in cascade] == [EASY_TIER, MEDIUM_TIER, HARD_TIER]
        assert [q.cascade_position for q in cascade] == [0, 1, 2]

    def test_stand_in_cannot_master(self, adaptive_module):
        state = answer(start_quiz(adaptive_module), adaptive_module, True)
        state = answer(state, adaptive_module, False)
        assert state.queue[state.current_index].question.id == "c2-easy"

        state = answer(state, adaptive_module, True)
        # medium slot served by the hard question
        state = submit_answer(state, adaptive_module, True)
        assert state.current.question.id == "c2-hard"
        assert not state.results["c2"].mastered

    def test_queue_only_grows(self, adaptive_module):
        state = start_quiz(adaptive_module)
        lengths = [len(state.queue)]
        for is_correct in (False, False, True, False, True, True):
            state = answer(state, adaptive_module, is_correct)
            lengths.append(len(state.queue))
            if state.completed:
                break

        assert lengths == sorted(lengths)


class TestLegacyMode:
    def test_wrong_answer_requeues_same_question(self, legacy_module):
        state = submit_answer(start_quiz(legacy_module), legacy_module, False)

        assert [q.concept_id for q in state.queue] == ["q1", "q2", "q1"]
        assert not state.queue[-1].is_penalty

    def test_requeued_question_can_master(self, legacy_module):
        state = answer(start_quiz(legacy_module), legacy_module, False)
        state = answer(state, legacy_module, True)
        state = answer(state, legacy_module, True)

        assert state.completed
        assert state.all_mastered
        assert state.total_attempts == 3


class TestScoring:
    def test_xp_for_first_attempt(self, adaptive_module):
        state = answer(start_quiz(adaptive_module), adaptive_module, True)
        assert state.xp_earned == 10

    def test_penalty_questions_earn_half_xp(self, single_concept_module):
        module = single_concept_module
        state = answer(start_quiz(module), module, False)
        assert state.xp_earned == 0
        assert state.hearts_lost == 1

        state = answer(state, module, True)
        assert state.xp_earned == 5

    def test_replay_earns_nothing(self, adaptive_module):
        state = start_quiz(adaptive_module, first_attempt=False)
        state = answer(state, adaptive_module, True)
        state = answer(state, adaptive_module, True)

        completion = summarize(state, adaptive_module)
        assert completion.xp_earned == 0
        assert completion.hearts_earned == 0
        assert completion.accuracy == 1.0
        assert completion.all_mastered

    def test_completion_summary(self, adaptive_module):
        state = answer(start_quiz(adaptive_module), adaptive_module, True)
        state = answer(state, adaptive_module, False)
        for _ in range(3):
            state = answer(state, adaptive_module, True)

        assert state.completed
        completion = summarize(state, adaptive_module)

        assert completion.total_attempts == 5
        assert completion.total_correct == 4
        assert completion.accuracy == pytest.approx(0.8)
        assert completion.score == 80
        assert completion.passed
        assert completion.all_mastered
        assert completion.hearts_earned == 5
        assert completion.hearts_lost == 1
        # 10 for c1-hard, then 5 + 5 + 5 for the cascade
        assert completion.xp_earned == 25

    def test_hearts_awarded_even_when_not_all_mastered(self, adaptive_module):
        # c2 has no hard question, so it is never queued and never mastered
        module = replace(
            adaptive_module,
            questions=tuple(q for q in adaptive_module.questions if q.id != "c2-hard"),
        )
        state = answer(start_quiz(module), module, True)

        assert state.completed
        completion = summarize(state, module)
        assert not completion.all_mastered
        assert completion.passed
        assert completion.hearts_earned == 5

    def test_progress(self, adaptive_module):
        state = start_quiz(adaptive_module)
        assert progress(state) == 0.0

        state = answer(state, adaptive_module, True)
        assert progress(state) == 0.5


class TestStateErrors:
    def test_double_submit(self, adaptive_module):
        state = submit_answer(start_quiz(adaptive_module), adaptive_module, True)
        with pytest.raises(QuizStateError):
            submit_answer(state, adaptive_module, True)

    def test_advance_before_answer(self, adaptive_module):
        with pytest.raises(QuizStateError):
            advance(start_quiz(adaptive_module))

    def test_submit_after_completion(self, single_concept_module):
        state = answer(start_quiz(single_concept_module), single_concept_module, True)
        assert state.completed

        with pytest.raises(QuizStateError):
            submit_answer(state, single_concept_module, True)
        with pytest.raises(QuizStateError):
            advance(state)

    def test_summarize_in_progress(self, adaptive_module):
        with pytest.raises(QuizStateError):
            summarize(start_quiz(adaptive_module), adaptive_module)


class TestSerialization:
    def test_mid_session_state_survives_round_trip(self, adaptive_module):
        state = answer(start_quiz(adaptive_module), adaptive_module, True)
        state = submit_answer(state, adaptive_module, False)

        restored = QuizState.from_dict(state.to_dict())

        assert restored == state
        assert restored.answered
        assert restored.results["c2"].cascade_triggered

        resumed = advance(restored)
        assert resumed.current.question.id == "c2-easy"
        assert resumed.current.is_penalty

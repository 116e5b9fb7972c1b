"""
Integration tests for the learning loop.

Runs recommendation, quiz sessions and feedback end to end against an
in-memory repository and the small test catalog.
"""

from datetime import timedelta

import pytest

from lessoncore.adaptive.models import Course, DifficultyLevel, Lesson, SkillProfile
from lessoncore.catalog.loader import Catalog
from lessoncore.delivery.progress_sync import DebouncedProgressSync
from lessoncore.delivery.telemetry import MemoryTelemetrySink
from lessoncore.exceptions import CatalogError, QuizStateError, StoreError
from lessoncore.learning.learning_loop import LearningLoop
from lessoncore.quiz.models import GenerationSource, QuizModule


class FakeMonotonic:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RecordingSyncClient:
    def __init__(self):
        self.pushed = []
        self.closed = False

    async def push(self, snapshot):
        self.pushed.append(snapshot)
        return True

    async def close(self):
        self.closed = True


class BrokenSink:
    def emit(self, event):
        raise OSError("read-only file system")


class PrefixProvider:
    def generate(self, question, concept):
        return f"Rephrased: {question.text}"


@pytest.fixture
def telemetry():
    return MemoryTelemetrySink()


@pytest.fixture
def loop(repository, small_catalog, telemetry, clock):
    return LearningLoop(repository, small_catalog, telemetry=telemetry, clock=clock)


async def run_quiz(loop, user_id, lesson_id, answers):
    """Answer a quiz to completion; returns the completion summary."""
    await loop.start_quiz(user_id, lesson_id)
    completion = None
    for is_correct in answers:
        await loop.answer(user_id, is_correct, response_ms=1500)
        _, completion = await loop.continue_quiz(user_id)
    return completion


class TestRecommend:
    @pytest.mark.asyncio
    async def test_new_learner(self, loop):
        recs = await loop.recommend("u1")

        assert [r.lesson_id for r in recs] == ["compound", "budget-basics", "legacy-lesson"]
        assert recs[0].reason == "Level up your investing skills"
        assert recs[1].reason == "Level up your budgeting skills"

    @pytest.mark.asyncio
    async def test_completed_lessons_drop_out(self, loop):
        await run_quiz(loop, "u1", "budget-basics", [True, True])

        recs = await loop.recommend("u1", count=10)
        assert "budget-basics" not in [r.lesson_id for r in recs]
        assert len(recs) == 3


class TestQuizFlow:
    @pytest.mark.asyncio
    async def test_perfect_first_attempt(self, loop, repository, telemetry, fixed_now):
        """Two correct hard answers master both concepts and feed the recommender."""
        completion = await run_quiz(loop, "u1", "budget-basics", [True, True])

        assert completion is not None
        assert completion.all_mastered
        assert completion.accuracy == 1.0
        assert completion.xp_earned == 20
        assert completion.hearts_earned == 5

        bandit = await repository.get_bandit_state("u1")
        assert bandit.total_pulls == 1
        assert bandit.lesson_params["budget-basics"].average_reward == pytest.approx(1.0)

        skills = await repository.get_skill_profile("u1")
        assert skills.budgeting == pytest.approx(60.0)

        assert await repository.get_completed_lessons("u1") == ["budget-basics"]
        assert await repository.get_quiz_state("u1") is None

        attempts = await repository.get_lesson_attempts("u1")
        assert len(attempts) == 1
        assert attempts[0].end_time == fixed_now
        assert attempts[0].start_time == fixed_now - timedelta(seconds=60)
        assert attempts[0].questions_attempted == 2

        prefs = await repository.get_preferences("u1")
        assert prefs.last_accuracy == 1.0

        assert [e.question_id for e in telemetry.events] == ["c1-hard", "c2-hard"]
        assert all(e.domain == "budgeting" and e.response_ms == 1500 for e in telemetry.events)

    @pytest.mark.asyncio
    async def test_cascade_flow(self, loop, telemetry):
        completion = await run_quiz(
            loop, "u1", "budget-basics", [False, True, True, True, True]
        )

        assert completion.all_mastered
        assert completion.total_attempts == 5
        assert completion.hearts_lost == 1
        assert completion.xp_earned == 25

        penalty_events = [e for e in telemetry.events if e.is_penalty]
        assert [e.cascade_position for e in penalty_events] == [0, 1, 2]
        assert [e.attempt_number for e in telemetry.events if e.concept_id == "c1"] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_replay_earns_no_rewards(self, loop, repository):
        await run_quiz(loop, "u1", "budget-basics", [True, True])
        state = await loop.start_quiz("u1", "budget-basics")
        assert state.first_attempt is False

        completion = await run_quiz(loop, "u1", "budget-basics", [True, True])

        assert completion.xp_earned == 0
        assert completion.hearts_earned == 0
        assert (await repository.get_reward_ledger("u1"))["budget-quiz"]["xp"] == 20
        assert (await repository.get_bandit_state("u1")).total_pulls == 2

    @pytest.mark.asyncio
    async def test_resume_in_flight_quiz(self, loop):
        await loop.start_quiz("u1", "budget-basics")
        answered = await loop.answer("u1", False)

        resumed = await loop.start_quiz("u1", "budget-basics")

        assert resumed == answered
        assert resumed.answered
        assert len(resumed.queue) == 5

    @pytest.mark.asyncio
    async def test_legacy_quiz(self, loop, repository):
        completion = await run_quiz(loop, "u1", "legacy-lesson", [False, True, True])

        assert completion.all_mastered
        assert completion.total_attempts == 3
        assert (await repository.get_skill_profile("u1")).saving > 50

    @pytest.mark.asyncio
    async def test_lesson_without_quiz(self, loop):
        with pytest.raises(CatalogError):
            await loop.start_quiz("u1", "compound")

    @pytest.mark.asyncio
    async def test_answer_without_quiz(self, loop):
        with pytest.raises(QuizStateError):
            await loop.answer("u1", True)
        with pytest.raises(QuizStateError):
            await loop.continue_quiz("u1")

    @pytest.mark.asyncio
    async def test_broken_telemetry_does_not_block(self, repository, small_catalog, clock):
        loop = LearningLoop(repository, small_catalog, telemetry=BrokenSink(), clock=clock)

        completion = await run_quiz(loop, "u1", "budget-basics", [True, True])

        assert completion.all_mastered

    @pytest.mark.asyncio
    async def test_generated_text(self, repository, small_catalog, telemetry, clock):
        loop = LearningLoop(
            repository,
            small_catalog,
            telemetry=telemetry,
            clock=clock,
            text_provider=PrefixProvider(),
        )

        state = await loop.start_quiz("u1", "budget-basics")
        assert state.queue[0].question.text == "Rephrased: Hard 1"

        state = await loop.answer("u1", False)
        assert [q.question.text for q in state.queue[2:]] == [
            "Rephrased: Easy 1",
            "Rephrased: Medium 1",
            "Rephrased: Hard 1",
        ]
        assert all(q.question.source == GenerationSource.GENERATED for q in state.queue)
        assert telemetry.events[0].generation_source == "generated"


class TestRecordLessonAttempt:
    @pytest.mark.asyncio
    async def test_completed_lesson(self, loop, repository):
        attempt = await loop.record_lesson_attempt(
            "u1", "compound", accuracy=0.9, time_spent_seconds=600, completed=True, was_recommended=True
        )

        assert attempt.questions_attempted == 8
        assert attempt.questions_correct == 7
        assert attempt.xp_earned == 50
        assert attempt.was_recommended
        assert await repository.get_completed_lessons("u1") == ["compound"]
        # (0.9 - 0.33) * 15 * 1.5 = 12.825, capped at +10
        assert (await repository.get_skill_profile("u1")).investing == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_abandoned_lesson(self, loop, repository):
        await loop.record_lesson_attempt(
            "u1", "options", accuracy=0.2, time_spent_seconds=120, completed=False
        )

        assert await repository.get_completed_lessons("u1") == []
        params = (await repository.get_bandit_state("u1")).lesson_params["options"]
        assert params.average_reward == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_unknown_lesson(self, loop, repository):
        assert await loop.record_lesson_attempt("u1", "missing", 1.0, 60, True) is None
        assert (await repository.get_bandit_state("u1")).total_pulls == 0


class TestProgressSync:
    @pytest.mark.asyncio
    async def test_snapshot_pushed_after_debounce(self, repository, small_catalog, clock):
        monotonic = FakeMonotonic()
        remote = RecordingSyncClient()
        sync = DebouncedProgressSync(remote, window_seconds=1.0, clock=monotonic)
        loop = LearningLoop(repository, small_catalog, progress_sync=sync, clock=clock)

        await run_quiz(loop, "u1", "budget-basics", [True, True])
        assert await loop.poll_sync() is False

        monotonic.now += 1.5
        assert await loop.poll_sync() is True

        snapshot = remote.pushed[0]
        assert snapshot.user_id == "u1"
        assert snapshot.total_pulls == 1
        assert snapshot.total_xp == 20
        assert snapshot.completed_lessons == ["budget-basics"]
        assert snapshot.skills["budgeting"] == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_close_flushes(self, repository, small_catalog, clock):
        remote = RecordingSyncClient()
        sync = DebouncedProgressSync(remote, window_seconds=60.0, clock=FakeMonotonic())
        loop = LearningLoop(repository, small_catalog, progress_sync=sync, clock=clock)

        await loop.record_lesson_attempt("u1", "compound", 0.8, 300, True)
        await loop.close()

        assert len(remote.pushed) == 1
        assert remote.closed


class TestInterruptedFinish:
    @pytest.mark.asyncio
    async def test_resumed_finish_applies_feedback_once(self, loop, repository, monkeypatch):
        """A finish that fails part-way and is resumed does not pull the bandit twice."""
        save_skill_profile = repository.save_skill_profile
        calls = []

        async def fail_first_save(user_id, profile):
            calls.append(user_id)
            if len(calls) == 1:
                raise StoreError("disk full")
            await save_skill_profile(user_id, profile)

        monkeypatch.setattr(repository, "save_skill_profile", fail_first_save)

        await loop.start_quiz("u1", "budget-basics")
        await loop.answer("u1", True)
        await loop.continue_quiz("u1")
        await loop.answer("u1", True)
        with pytest.raises(StoreError):
            await loop.continue_quiz("u1")
        assert (await repository.get_bandit_state("u1")).total_pulls == 1

        resumed = await loop.start_quiz("u1", "budget-basics")
        assert resumed.answered
        _, completion = await loop.continue_quiz("u1")

        assert completion.xp_earned == 20
        assert (await repository.get_bandit_state("u1")).total_pulls == 1
        assert (await repository.get_module_progress("u1"))["budget-quiz"].attempts == 1
        assert (await repository.get_domain_accuracy("u1"))["budgeting"].total == 2
        assert await repository.get_quiz_state("u1") is None
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_finishing_same_session_twice(self, loop, repository):
        await loop.start_quiz("u1", "budget-basics")
        await loop.answer("u1", True)
        await loop.continue_quiz("u1")
        await loop.answer("u1", True)
        state, first = await loop.continue_quiz("u1")

        second = await loop.finish_quiz("u1", state)

        assert first.xp_earned == second.xp_earned == 20
        assert (await repository.get_bandit_state("u1")).total_pulls == 1
        assert len(await repository.get_lesson_attempts("u1")) == 1


class TestQuizRecords:
    @pytest.mark.asyncio
    async def test_cascade_registers_and_remediates(self, loop, repository, fixed_now):
        await loop.start_quiz("u1", "budget-basics")
        await loop.answer("u1", False)

        pending = await repository.pending_remediation("u1", lesson_id="budget-basics")
        assert [e.concept_id for e in pending] == ["c1"]
        assert pending[0].question_id == "c1-hard"
        assert pending[0].variant_question_id == "c1-easy"
        assert pending[0].timestamp == fixed_now

        await loop.continue_quiz("u1")
        for _ in range(4):
            await loop.answer("u1", True)
            await loop.continue_quiz("u1")

        assert await repository.pending_remediation("u1") == []
        entries = await repository.get_wrong_answers("u1")
        assert len(entries) == 1
        assert entries[0].remediation_complete

    @pytest.mark.asyncio
    async def test_failed_retry_stays_pending(self, loop, repository):
        # c1 hard wrong, c2 hard right, c1 easy, c1 medium, c1 hard retry wrong
        await loop.start_quiz("u1", "budget-basics")
        for is_correct in [False, True, True, True, False]:
            await loop.answer("u1", is_correct)
            await loop.continue_quiz("u1")

        assert [e.concept_id for e in await repository.pending_remediation("u1")] == ["c1"]

    @pytest.mark.asyncio
    async def test_legacy_quiz_registers_nothing(self, loop, repository):
        await run_quiz(loop, "u1", "legacy-lesson", [False, True, True])
        assert await repository.get_wrong_answers("u1") == []

    @pytest.mark.asyncio
    async def test_domain_accuracy_tally(self, loop, repository):
        await run_quiz(loop, "u1", "budget-basics", [False, True, True, True, True])
        await run_quiz(loop, "u1", "legacy-lesson", [False, True, True])

        tallies = await repository.get_domain_accuracy("u1")
        assert (tallies["budgeting"].correct, tallies["budgeting"].total) == (4, 5)
        assert (tallies["saving"].correct, tallies["saving"].total) == (2, 3)
        assert tallies["saving"].percentage == 67

    @pytest.mark.asyncio
    async def test_module_progress(self, loop, repository, fixed_now):
        await run_quiz(loop, "u1", "legacy-lesson", [False, True, True])

        progress = (await repository.get_module_progress("u1"))["legacy-quiz"]
        assert progress.score == 67
        assert not progress.mastery_achieved
        assert progress.status == "in_progress"

        await run_quiz(loop, "u1", "legacy-lesson", [True, True])

        progress = (await repository.get_module_progress("u1"))["legacy-quiz"]
        assert progress.attempts == 2
        assert progress.score == 100
        assert progress.best_score == 100
        assert progress.mastery_achieved
        assert progress.status == "completed"
        assert progress.last_attempt == fixed_now


class TestEmptyQuiz:
    @pytest.fixture
    def empty_catalog(self):
        course = Course(
            id="intro",
            title="Intro",
            lessons=(
                Lesson(
                    id="welcome",
                    course_id="intro",
                    domain="saving",
                    difficulty=DifficultyLevel.BEGINNER,
                    quiz_module_id="welcome-quiz",
                ),
            ),
        )
        return Catalog([course], [QuizModule(module_id="welcome-quiz", lesson_id="welcome")])

    @pytest.mark.asyncio
    async def test_finishes_immediately(self, repository, empty_catalog, clock):
        loop = LearningLoop(repository, empty_catalog, clock=clock)

        state = await loop.start_quiz("u1", "welcome")

        assert state.completed
        assert await repository.get_quiz_state("u1") is None
        assert await repository.get_completed_lessons("u1") == ["welcome"]
        assert (await repository.get_module_progress("u1"))["welcome-quiz"].attempts == 1
        # No answers, so nothing to learn from
        assert (await repository.get_bandit_state("u1")).total_pulls == 0
        assert await repository.get_skill_profile("u1") == SkillProfile()


class TestPreferredDifficulty:
    @pytest.mark.asyncio
    async def test_changes_ranking(self, loop):
        before = await loop.recommend("u1", count=4)
        assert [r.lesson_id for r in before][-1] == "options"

        prefs = await loop.set_preferred_difficulty("u1", "advanced")
        assert prefs.preferred_difficulty == DifficultyLevel.ADVANCED

        after = await loop.recommend("u1", count=4)
        assert [r.lesson_id for r in after] == ["compound", "options", "budget-basics", "legacy-lesson"]

    @pytest.mark.asyncio
    async def test_survives_feedback(self, loop, repository):
        await loop.set_preferred_difficulty("u1", DifficultyLevel.INTERMEDIATE)
        await run_quiz(loop, "u1", "budget-basics", [True, True])

        prefs = await repository.get_preferences("u1")
        assert prefs.preferred_difficulty == DifficultyLevel.INTERMEDIATE
        assert prefs.last_accuracy == 1.0

    @pytest.mark.asyncio
    async def test_unknown_level(self, loop):
        with pytest.raises(ValueError):
            await loop.set_preferred_difficulty("u1", "expert")


class TestClose:
    @pytest.mark.asyncio
    async def test_closes_store(self, small_catalog, clock, tmp_path):
        from lessoncore.store.kv import SQLiteKeyValueStore
        from lessoncore.store.repository import LearnerRepository

        store = SQLiteKeyValueStore(tmp_path / "state.db")
        loop = LearningLoop(LearnerRepository(store), small_catalog, clock=clock)
        await loop.record_lesson_attempt("u1", "compound", 0.8, 300, True)

        await loop.close()

        assert store._conn is None

"""
Learning Loop.

Orchestrates one learner's session against the persisted state:

    recommend -> start_quiz -> answer / continue_quiz ... -> finish_quiz
                                                             |
         quiz records + reward + skill update + bandit update <--+

All pure decisions live in lessoncore.adaptive and lessoncore.quiz; this
module reads and writes state, emits telemetry and schedules progress sync.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from loguru import logger

from lessoncore.adaptive.bandit import update_bandit_state
from lessoncore.adaptive.context import build_learning_context
from lessoncore.adaptive.models import (
    AdaptiveRecommendation,
    BanditState,
    DifficultyLevel,
    LearnerPreferences,
    LearningContext,
    Lesson,
    LessonAttemptLog,
    LessonReward,
    SkillDomain,
    SkillProfile,
)
from lessoncore.adaptive.recommender import get_recommendations
from lessoncore.adaptive.skills import update_skill_levels
from lessoncore.catalog.loader import Catalog
from lessoncore.delivery.progress_sync import DebouncedProgressSync, ProgressSnapshot
from lessoncore.delivery.telemetry import AttemptEvent, TelemetrySink, emit_best_effort
from lessoncore.exceptions import CatalogError, QuizStateError
from lessoncore.quiz.generation import QuestionTextProvider, apply_generated_text
from lessoncore.quiz.mastery_engine import advance, start_quiz, submit_answer, summarize
from lessoncore.quiz.models import (
    HARD_TIER,
    QueuedQuestion,
    QuizCompletion,
    QuizModule,
    QuizState,
    WrongAnswerEntry,
)
from lessoncore.store.repository import LearnerRepository

# Quiz completions are timed at a flat 30 seconds per attempt
SECONDS_PER_QUIZ_ATTEMPT = 30


@dataclass(frozen=True)
class LearnerSnapshot:
    """Everything the loop reads for one learner."""

    user_id: str
    skills: SkillProfile
    bandit_state: BanditState
    completed_lessons: list[str]
    attempts: list[LessonAttemptLog]
    preferences: LearnerPreferences


class LearningLoop:
    """Session lifecycle and feedback loop for the adaptive recommender."""

    def __init__(
        self,
        repository: LearnerRepository,
        catalog: Catalog,
        telemetry: TelemetrySink | None = None,
        progress_sync: DebouncedProgressSync | None = None,
        clock: Callable[[], datetime] = datetime.now,
        text_provider: QuestionTextProvider | None = None,
    ):
        self.repository = repository
        self.catalog = catalog
        self.telemetry = telemetry
        self.progress_sync = progress_sync
        self.clock = clock
        self.text_provider = text_provider

    # =========================================================================
    # Reads
    # =========================================================================

    async def load(self, user_id: str) -> LearnerSnapshot:
        """Read all persisted learner state."""
        return LearnerSnapshot(
            user_id=user_id,
            skills=await self.repository.get_skill_profile(user_id),
            bandit_state=await self.repository.get_bandit_state(user_id),
            completed_lessons=await self.repository.get_completed_lessons(user_id),
            attempts=await self.repository.get_lesson_attempts(user_id),
            preferences=await self.repository.get_preferences(user_id),
        )

    def _context(self, snapshot: LearnerSnapshot, streak: int, now: datetime) -> LearningContext:
        return build_learning_context(
            skills=snapshot.skills,
            streak=streak,
            attempts=snapshot.attempts,
            preferences=snapshot.preferences,
            completed=snapshot.completed_lessons,
            now=now,
        )

    async def recommend(
        self,
        user_id: str,
        count: int = 3,
        streak: int = 0,
    ) -> list[AdaptiveRecommendation]:
        """
        Rank uncompleted catalog lessons for a learner.

        Args:
            user_id: Learner id
            count: Maximum recommendations
            streak: Current daily streak, supplied by the caller

        Returns:
            Recommendations in descending score order
        """
        snapshot = await self.load(user_id)
        context = self._context(snapshot, streak, self.clock())
        candidates = self.catalog.available_lessons(snapshot.completed_lessons)
        return get_recommendations(context, snapshot.bandit_state, candidates, count)

    # =========================================================================
    # Quiz Session
    # =========================================================================

    def _module_for(self, state: QuizState) -> QuizModule:
        module = self.catalog.get_quiz_module(state.module_id)
        if module is None:
            raise CatalogError(f"Quiz module {state.module_id} is no longer in the catalog")
        return module

    def _substitute_text(self, state: QuizState, module: QuizModule, start: int) -> QuizState:
        """Run the text provider over queue items from `start` onward."""
        if self.text_provider is None or start >= len(state.queue):
            return state
        queue = list(state.queue)
        for i in range(start, len(queue)):
            concept = module.get_concept(queue[i].concept_id)
            queue[i] = apply_generated_text(queue[i], self.text_provider, concept)
        return replace(state, queue=tuple(queue))

    async def start_quiz(self, user_id: str, lesson_id: str) -> QuizState:
        """
        Start, or resume, the quiz for a lesson.

        An unfinished quiz for the same lesson is resumed as-is. The
        first-attempt flag is fixed here: a module already in the reward
        ledger is a replay.

        Raises:
            CatalogError: If the lesson has no quiz
        """
        module = self.catalog.get_quiz_for_lesson(lesson_id)
        if module is None:
            raise CatalogError(f"Lesson {lesson_id} has no quiz")

        existing = await self.repository.get_quiz_state(user_id)
        if existing is not None and existing.module_id == module.module_id and not existing.completed:
            logger.info("Resuming quiz {} for {}", module.module_id, user_id)
            return existing

        first_attempt = not await self.repository.has_reward(user_id, module.module_id)
        state = start_quiz(module, first_attempt=first_attempt)
        state = self._substitute_text(state, module, 0)
        if state.completed:
            logger.warning("Quiz {} has no questions, finishing it now", module.module_id)
            await self.finish_quiz(user_id, state)
            return state

        await self.repository.save_quiz_state(user_id, state)

        logger.info(
            "Started quiz {} for {} ({} concepts, first_attempt={})",
            module.module_id,
            user_id,
            len(state.concept_ids),
            first_attempt,
        )
        return state

    async def current_quiz(self, user_id: str) -> QuizState | None:
        return await self.repository.get_quiz_state(user_id)

    async def answer(self, user_id: str, is_correct: bool, response_ms: int = 0) -> QuizState:
        """
        Answer the current question of the learner's in-flight quiz.

        Raises:
            QuizStateError: If there is no quiz in progress
        """
        state = await self.repository.get_quiz_state(user_id)
        if state is None:
            raise QuizStateError(f"No quiz in progress for {user_id}")
        module = self._module_for(state)
        item = state.current

        queue_length = len(state.queue)
        new_state = submit_answer(state, module, is_correct)
        new_state = self._substitute_text(new_state, module, queue_length)

        if item is not None:
            lesson = self.catalog.get_lesson(state.lesson_id)
            emit_best_effort(
                self.telemetry,
                AttemptEvent(
                    user_id=user_id,
                    lesson_id=state.lesson_id,
                    module_id=state.module_id,
                    question_id=item.question.id,
                    concept_id=item.concept_id,
                    domain=lesson.domain if lesson else None,
                    tier=item.tier,
                    is_correct=is_correct,
                    response_ms=max(0, int(response_ms)),
                    attempt_number=new_state.results[item.concept_id].total_attempts,
                    is_penalty=item.is_penalty,
                    cascade_position=item.cascade_position,
                    generation_source=item.question.source.value,
                    timestamp=self.clock(),
                ),
            )
            await self._track_remediation(user_id, state, new_state, module, item, is_correct)

        await self.repository.save_quiz_state(user_id, new_state)
        return new_state

    async def _track_remediation(
        self,
        user_id: str,
        before: QuizState,
        after: QuizState,
        module: QuizModule,
        item: QueuedQuestion,
        is_correct: bool,
    ) -> None:
        """Register a concept when its cascade starts; close it on a hard-retry pass."""
        concept_id = item.concept_id
        was_in_cascade = before.results[concept_id].cascade_triggered

        if not was_in_cascade and after.results[concept_id].cascade_triggered:
            concept = module.get_concept(concept_id)
            await self.repository.register_wrong_answer(
                user_id,
                WrongAnswerEntry(
                    concept_id=concept_id,
                    question_id=item.question.id,
                    lesson_id=before.lesson_id,
                    variant_question_id=concept.easy_question_id if concept else None,
                    timestamp=self.clock(),
                ),
            )
        elif was_in_cascade and is_correct and item.is_penalty and item.tier == HARD_TIER:
            await self.repository.mark_remediated(user_id, concept_id)

    async def continue_quiz(
        self,
        user_id: str,
        streak: int = 0,
    ) -> tuple[QuizState, QuizCompletion | None]:
        """
        Move to the next question.

        Returns:
            The new state, plus the completion summary if the queue is exhausted
        """
        state = await self.repository.get_quiz_state(user_id)
        if state is None:
            raise QuizStateError(f"No quiz in progress for {user_id}")

        new_state = advance(state)
        if not new_state.completed:
            await self.repository.save_quiz_state(user_id, new_state)
            return new_state, None

        completion = await self.finish_quiz(user_id, new_state, streak=streak)
        return new_state, completion

    async def finish_quiz(self, user_id: str, state: QuizState, streak: int = 0) -> QuizCompletion:
        """
        Fold a completed quiz into the learner's state.

        Rewards are recorded in the ledger under the module id; if the ledger
        already holds the module from another session, no XP or hearts are
        issued again. Progress records and recommender feedback are applied
        once per session: finishing a session that was already claimed (for
        example after an interrupted finish) only clears the quiz state.
        """
        module = self._module_for(state)
        completion = summarize(state, module)

        if completion.xp_earned or completion.hearts_earned:
            issued = await self.repository.record_reward(
                user_id,
                module.module_id,
                {
                    "xp": completion.xp_earned,
                    "hearts": completion.hearts_earned,
                    "score": completion.score,
                    "session_id": state.session_id,
                    "completed_at": self.clock().isoformat(),
                },
            )
            if not issued:
                entry = (await self.repository.get_reward_ledger(user_id)).get(module.module_id, {})
                if entry.get("session_id") != state.session_id:
                    logger.info("Rewards for {} already issued to {}", module.module_id, user_id)
                    completion = replace(completion, xp_earned=0, hearts_earned=0)

        if await self.repository.claim_session(user_id, state.session_id):
            await self._record_quiz_progress(user_id, state, module, completion, streak)
        else:
            logger.info("Session {} already applied for {}, skipping feedback", state.session_id, user_id)

        await self.repository.clear_quiz_state(user_id)
        logger.info(
            "Quiz {} complete for {}: score={} mastered={} xp={}",
            module.module_id,
            user_id,
            completion.score,
            completion.all_mastered,
            completion.xp_earned,
        )
        return completion

    async def _record_quiz_progress(
        self,
        user_id: str,
        state: QuizState,
        module: QuizModule,
        completion: QuizCompletion,
        streak: int,
    ) -> None:
        await self.repository.record_quiz_attempt(
            user_id,
            module.module_id,
            completion.score,
            module.mastery_threshold,
            now=self.clock(),
        )

        lesson = self.catalog.get_lesson(state.lesson_id)
        if lesson is None:
            logger.warning("Lesson {} not found, skipping feedback", state.lesson_id)
            return

        if completion.total_attempts == 0:
            # Nothing was answered, so there is no evidence for skills or the bandit
            await self.repository.add_completed_lesson(user_id, lesson.id)
            return

        await self.repository.record_quiz_result(
            user_id, lesson.domain, completion.total_correct, completion.total_attempts
        )
        await self._apply_feedback(
            user_id,
            lesson,
            accuracy=completion.accuracy,
            time_spent_seconds=completion.total_attempts * SECONDS_PER_QUIZ_ATTEMPT,
            completed=True,
            questions_attempted=completion.total_attempts,
            questions_correct=completion.total_correct,
            xp_earned=completion.xp_earned,
            streak=streak,
        )

    # =========================================================================
    # Feedback
    # =========================================================================

    async def record_lesson_attempt(
        self,
        user_id: str,
        lesson_id: str,
        accuracy: float,
        time_spent_seconds: float,
        completed: bool,
        was_recommended: bool = False,
        user_rating: int | None = None,
        streak: int = 0,
    ) -> LessonAttemptLog | None:
        """
        Feed a non-quiz lesson result back into the recommender.

        Returns:
            The attempt log entry, or None if the lesson is unknown
        """
        lesson = self.catalog.get_lesson(lesson_id)
        if lesson is None:
            logger.warning("Lesson {} not found", lesson_id)
            return None

        return await self._apply_feedback(
            user_id,
            lesson,
            accuracy=accuracy,
            time_spent_seconds=time_spent_seconds,
            completed=completed,
            questions_attempted=lesson.question_count,
            questions_correct=round(accuracy * lesson.question_count),
            xp_earned=lesson.xp_reward if completed else 0,
            was_recommended=was_recommended,
            user_rating=user_rating,
            streak=streak,
        )

    async def _apply_feedback(
        self,
        user_id: str,
        lesson: Lesson,
        accuracy: float,
        time_spent_seconds: float,
        completed: bool,
        questions_attempted: int,
        questions_correct: int,
        xp_earned: int,
        was_recommended: bool = False,
        user_rating: int | None = None,
        streak: int = 0,
    ) -> LessonAttemptLog:
        now = self.clock()
        snapshot = await self.load(user_id)
        context = self._context(snapshot, streak, now)

        reward = LessonReward(
            lesson_id=lesson.id,
            accuracy=accuracy,
            completion_time=time_spent_seconds,
            expected_time=lesson.estimated_minutes * 60,
            completed=completed,
            user_rating=user_rating,
        )
        await self.repository.update_bandit_state(
            user_id,
            lambda state: update_bandit_state(state, lesson.id, context, reward, now),
        )

        skills = update_skill_levels(snapshot.skills, lesson.domain, accuracy, lesson.difficulty, now)
        await self.repository.save_skill_profile(user_id, skills)

        if completed:
            await self.repository.add_completed_lesson(user_id, lesson.id)

        attempt = LessonAttemptLog(
            lesson_id=lesson.id,
            course_id=lesson.course_id,
            start_time=now - timedelta(seconds=time_spent_seconds),
            end_time=now,
            questions_attempted=questions_attempted,
            questions_correct=questions_correct,
            accuracy=accuracy,
            xp_earned=xp_earned,
            was_recommended=was_recommended,
            confidence_rating=user_rating,
        )
        await self.repository.append_lesson_attempt(user_id, attempt)

        await self.repository.save_preferences(
            user_id,
            replace(snapshot.preferences, last_difficulty=lesson.difficulty, last_accuracy=accuracy),
        )

        await self._schedule_sync(user_id)
        return attempt

    # =========================================================================
    # Preferences
    # =========================================================================

    async def set_preferred_difficulty(
        self,
        user_id: str,
        difficulty: DifficultyLevel | str,
    ) -> LearnerPreferences:
        """
        Set the difficulty the learner asked for.

        It is blended with the skill-derived tier when ranking lessons.

        Raises:
            ValueError: If difficulty is not a known level
        """
        level = DifficultyLevel(difficulty)
        preferences = replace(await self.repository.get_preferences(user_id), preferred_difficulty=level)
        await self.repository.save_preferences(user_id, preferences)
        logger.info("Preferred difficulty for {} set to {}", user_id, level.value)
        return preferences

    # =========================================================================
    # Progress Sync
    # =========================================================================

    async def _schedule_sync(self, user_id: str) -> None:
        if self.progress_sync is None:
            return
        snapshot = await self.load(user_id)
        ledger = await self.repository.get_reward_ledger(user_id)
        self.progress_sync.schedule(
            ProgressSnapshot(
                user_id=user_id,
                skills={domain.value: snapshot.skills.get(domain) for domain in SkillDomain},
                completed_lessons=snapshot.completed_lessons,
                total_pulls=snapshot.bandit_state.total_pulls,
                total_xp=sum(int(entry.get("xp", 0)) for entry in ledger.values()),
                updated_at=self.clock(),
            )
        )

    async def poll_sync(self) -> bool:
        """Send the pending progress snapshot if its debounce window has passed."""
        if self.progress_sync is None:
            return False
        return await self.progress_sync.poll()

    async def close(self, flush: bool = True) -> None:
        """Flush (or drop) pending progress sync, then release the HTTP client and the store."""
        try:
            if self.progress_sync is not None:
                await self.progress_sync.close(flush=flush)
        finally:
            await self.repository.close()

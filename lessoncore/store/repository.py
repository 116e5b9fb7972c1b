"""
Learner Repository.

Typed, per-user access to persisted learner state over a KeyValueStore.

Keys are namespaced by user id:
    {user}:skill_profile      SkillProfile
    {user}:bandit_state       BanditState
    {user}:completed_lessons  list of lesson ids
    {user}:lesson_attempts    list of LessonAttemptLog
    {user}:reward_ledger      module id -> completion record
    {user}:quiz_state         in-flight QuizState
    {user}:preferences        LearnerPreferences
    {user}:wrong_answers      list of WrongAnswerEntry
    {user}:domain_accuracy    domain -> DomainAccuracy
    {user}:module_progress    module id -> ModuleProgress
    {user}:finished_sessions  recent quiz session ids already folded in

Values are JSON. A corrupt or unreadable value is logged and replaced by the
default, so a damaged key never blocks a session.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, TypeVar

from loguru import logger

from lessoncore.adaptive.bandit import create_initial_bandit_state
from lessoncore.adaptive.models import (
    BanditState,
    LearnerPreferences,
    LessonAttemptLog,
    SkillProfile,
)
from lessoncore.quiz.models import (
    DomainAccuracy,
    ModuleProgress,
    QuizState,
    WrongAnswerEntry,
)
from lessoncore.store.kv import KeyValueStore

T = TypeVar("T")

SKILL_PROFILE = "skill_profile"
BANDIT_STATE = "bandit_state"
COMPLETED_LESSONS = "completed_lessons"
LESSON_ATTEMPTS = "lesson_attempts"
REWARD_LEDGER = "reward_ledger"
QUIZ_STATE = "quiz_state"
PREFERENCES = "preferences"
WRONG_ANSWERS = "wrong_answers"
DOMAIN_ACCURACY = "domain_accuracy"
MODULE_PROGRESS = "module_progress"
FINISHED_SESSIONS = "finished_sessions"

# Only the most recent session ids are kept
MAX_FINISHED_SESSIONS = 100

ALL_KEYS = (
    SKILL_PROFILE,
    BANDIT_STATE,
    COMPLETED_LESSONS,
    LESSON_ATTEMPTS,
    REWARD_LEDGER,
    QUIZ_STATE,
    PREFERENCES,
    WRONG_ANSWERS,
    DOMAIN_ACCURACY,
    MODULE_PROGRESS,
    FINISHED_SESSIONS,
)


class LearnerRepository:
    """
    Async facade over a key-value store.

    Writes are last-write-wins per key. Bandit updates that must not lose
    concurrent increments go through update_bandit_state, which serializes
    read-modify-write per user.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def key(user_id: str, name: str) -> str:
        return f"{user_id}:{name}"

    def _read(self, user_id: str, name: str, decode: Callable[[Any], T], default: Callable[[], T]) -> T:
        key = self.key(user_id, name)
        raw = self.store.get(key)
        if raw is None:
            return default()
        try:
            return decode(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("Corrupt value at {}, using default: {}", key, e)
            return default()

    def _write(self, user_id: str, name: str, value: Any) -> None:
        self.store.set(self.key(user_id, name), json.dumps(value))

    # =========================================================================
    # Skills and Preferences
    # =========================================================================

    async def get_skill_profile(self, user_id: str) -> SkillProfile:
        return self._read(user_id, SKILL_PROFILE, SkillProfile.from_dict, SkillProfile)

    async def save_skill_profile(self, user_id: str, profile: SkillProfile) -> None:
        self._write(user_id, SKILL_PROFILE, profile.to_dict())

    async def get_preferences(self, user_id: str) -> LearnerPreferences:
        return self._read(user_id, PREFERENCES, LearnerPreferences.from_dict, LearnerPreferences)

    async def save_preferences(self, user_id: str, preferences: LearnerPreferences) -> None:
        self._write(user_id, PREFERENCES, preferences.to_dict())

    # =========================================================================
    # Bandit State
    # =========================================================================

    async def get_bandit_state(self, user_id: str) -> BanditState:
        return self._read(user_id, BANDIT_STATE, BanditState.from_dict, create_initial_bandit_state)

    async def save_bandit_state(self, user_id: str, state: BanditState) -> None:
        self._write(user_id, BANDIT_STATE, state.to_dict())

    async def update_bandit_state(
        self,
        user_id: str,
        update: Callable[[BanditState], BanditState],
    ) -> BanditState:
        """
        Atomically read, transform and write a user's bandit state.

        Args:
            user_id: Learner id
            update: Pure function from old state to new state

        Returns:
            The state that was written
        """
        async with self._locks[user_id]:
            current = await self.get_bandit_state(user_id)
            new_state = update(current)
            await self.save_bandit_state(user_id, new_state)
            return new_state

    # =========================================================================
    # Completion History
    # =========================================================================

    async def get_completed_lessons(self, user_id: str) -> list[str]:
        return self._read(user_id, COMPLETED_LESSONS, lambda v: [str(x) for x in v], list)

    async def add_completed_lesson(self, user_id: str, lesson_id: str) -> None:
        completed = await self.get_completed_lessons(user_id)
        if lesson_id not in completed:
            completed.append(lesson_id)
            self._write(user_id, COMPLETED_LESSONS, completed)

    async def get_lesson_attempts(self, user_id: str) -> list[LessonAttemptLog]:
        return self._read(
            user_id,
            LESSON_ATTEMPTS,
            lambda v: [LessonAttemptLog.from_dict(item) for item in v],
            list,
        )

    async def append_lesson_attempt(self, user_id: str, attempt: LessonAttemptLog) -> None:
        attempts = await self.get_lesson_attempts(user_id)
        attempts.append(attempt)
        self._write(user_id, LESSON_ATTEMPTS, [a.to_dict() for a in attempts])

    # =========================================================================
    # Reward Ledger
    # =========================================================================

    async def get_reward_ledger(self, user_id: str) -> dict[str, dict[str, Any]]:
        return self._read(user_id, REWARD_LEDGER, dict, dict)

    async def has_reward(self, user_id: str, module_id: str) -> bool:
        return module_id in await self.get_reward_ledger(user_id)

    async def record_reward(self, user_id: str, module_id: str, entry: dict[str, Any]) -> bool:
        """
        Record that a module's rewards were issued.

        Returns:
            False if the module was already in the ledger (nothing written)
        """
        ledger = await self.get_reward_ledger(user_id)
        if module_id in ledger:
            return False
        ledger[module_id] = entry
        self._write(user_id, REWARD_LEDGER, ledger)
        return True

    # =========================================================================
    # In-flight Quiz
    # =========================================================================

    async def get_quiz_state(self, user_id: str) -> QuizState | None:
        return self._read(user_id, QUIZ_STATE, QuizState.from_dict, lambda: None)

    async def save_quiz_state(self, user_id: str, state: QuizState) -> None:
        self._write(user_id, QUIZ_STATE, state.to_dict())

    async def clear_quiz_state(self, user_id: str) -> None:
        self.store.delete(self.key(user_id, QUIZ_STATE))

    async def get_finished_sessions(self, user_id: str) -> list[str]:
        return self._read(user_id, FINISHED_SESSIONS, lambda v: [str(x) for x in v], list)

    async def claim_session(self, user_id: str, session_id: str) -> bool:
        """
        Mark a quiz session as folded into learner state.

        Returns:
            False if the session was already claimed (nothing written)
        """
        async with self._locks[user_id]:
            sessions = await self.get_finished_sessions(user_id)
            if session_id in sessions:
                return False
            sessions.append(session_id)
            self._write(user_id, FINISHED_SESSIONS, sessions[-MAX_FINISHED_SESSIONS:])
            return True

    # =========================================================================
    # Remediation and Quiz Records
    # =========================================================================

    async def get_wrong_answers(self, user_id: str) -> list[WrongAnswerEntry]:
        return self._read(
            user_id,
            WRONG_ANSWERS,
            lambda v: [WrongAnswerEntry.from_dict(item) for item in v],
            list,
        )

    async def register_wrong_answer(self, user_id: str, entry: WrongAnswerEntry) -> None:
        """Add a missed concept, or reopen it if it was already registered."""
        entries = await self.get_wrong_answers(user_id)
        for i, existing in enumerate(entries):
            if existing.concept_id == entry.concept_id:
                entries[i] = replace(
                    entry,
                    variant_question_id=entry.variant_question_id or existing.variant_question_id,
                    remediation_complete=False,
                )
                break
        else:
            entries.append(entry)
        self._write(user_id, WRONG_ANSWERS, [e.to_dict() for e in entries])

    async def mark_remediated(self, user_id: str, concept_id: str) -> bool:
        """
        Close out a registered concept.

        Returns:
            False if the concept was never registered
        """
        entries = await self.get_wrong_answers(user_id)
        found = False
        for i, existing in enumerate(entries):
            if existing.concept_id == concept_id:
                entries[i] = replace(existing, remediation_complete=True)
                found = True
        if found:
            self._write(user_id, WRONG_ANSWERS, [e.to_dict() for e in entries])
        return found

    async def pending_remediation(self, user_id: str, lesson_id: str | None = None) -> list[WrongAnswerEntry]:
        return [
            entry
            for entry in await self.get_wrong_answers(user_id)
            if entry.requires_remediation and (lesson_id is None or entry.lesson_id == lesson_id)
        ]

    async def get_domain_accuracy(self, user_id: str) -> dict[str, DomainAccuracy]:
        return self._read(
            user_id,
            DOMAIN_ACCURACY,
            lambda v: {str(k): DomainAccuracy.from_dict(item) for k, item in v.items()},
            dict,
        )

    async def record_quiz_result(self, user_id: str, domain: str, correct: int, total: int) -> DomainAccuracy:
        """Add one quiz's answers to the domain's running tally."""
        tallies = await self.get_domain_accuracy(user_id)
        previous = tallies.get(domain, DomainAccuracy())
        tallies[domain] = DomainAccuracy(
            correct=previous.correct + max(0, correct),
            total=previous.total + max(0, total),
        )
        self._write(user_id, DOMAIN_ACCURACY, {k: v.to_dict() for k, v in tallies.items()})
        return tallies[domain]

    async def get_module_progress(self, user_id: str) -> dict[str, ModuleProgress]:
        return self._read(
            user_id,
            MODULE_PROGRESS,
            lambda v: {str(k): ModuleProgress.from_dict(item) for k, item in v.items()},
            dict,
        )

    async def record_quiz_attempt(
        self,
        user_id: str,
        module_id: str,
        score: int,
        mastery_threshold: float,
        now: datetime | None = None,
    ) -> ModuleProgress:
        """
        Record a finished attempt at a quiz module.

        Args:
            score: 0-100
            mastery_threshold: Fraction (0-1) the score must reach to pass

        Returns:
            The updated progress; mastery_achieved reflects this attempt
        """
        progress = await self.get_module_progress(user_id)
        previous = progress.get(module_id, ModuleProgress(module_id=module_id))
        progress[module_id] = ModuleProgress(
            module_id=module_id,
            attempts=previous.attempts + 1,
            score=score,
            best_score=max(previous.best_score, score),
            mastery_achieved=score >= mastery_threshold * 100,
            last_attempt=now,
        )
        self._write(user_id, MODULE_PROGRESS, {k: v.to_dict() for k, v in progress.items()})
        return progress[module_id]

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def reset(self, user_id: str) -> None:
        """Delete every key belonging to a user."""
        for name in ALL_KEYS:
            self.store.delete(self.key(user_id, name))
        logger.info("Reset learner state for {}", user_id)

    async def close(self) -> None:
        self.store.close()

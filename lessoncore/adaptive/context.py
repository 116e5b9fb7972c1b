"""
Learning context construction.

Assembles the LearningContext snapshot from persisted learner state and the
current time. The clock is always passed in explicitly.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Sequence

from lessoncore.adaptive.features import time_of_day_for
from lessoncore.adaptive.models import (
    DifficultyLevel,
    LearnerPreferences,
    LearningContext,
    LessonAttemptLog,
    SkillProfile,
)

SESSION_GAP = timedelta(minutes=30)


def count_today_sessions(attempts: Sequence[LessonAttemptLog], now: datetime) -> int:
    """
    Number of study sessions on `now`'s calendar date.

    A new session starts whenever 30 minutes or more pass between one
    attempt's end and the next attempt's start. With no attempts today the
    learner is in their first session.
    """
    today = sorted(
        (a for a in attempts if a.start_time.date() == now.date()),
        key=lambda a: a.start_time,
    )
    if not today:
        return 1

    sessions = 1
    for previous, current in zip(today, today[1:]):
        if current.start_time - previous.end_time >= SESSION_GAP:
            sessions += 1
    return sessions


def build_learning_context(
    skills: SkillProfile,
    streak: int,
    attempts: Sequence[LessonAttemptLog],
    preferences: LearnerPreferences | None,
    completed: Iterable[str],
    now: datetime,
) -> LearningContext:
    """Snapshot the learner's situation for one recommendation call."""
    prefs = preferences or LearnerPreferences()
    return LearningContext(
        skill_levels=skills,
        current_streak=max(0, streak),
        time_of_day=time_of_day_for(now),
        session_number=count_today_sessions(attempts, now),
        last_lesson_difficulty=prefs.last_difficulty,
        last_lesson_performance=prefs.last_accuracy,
        preferred_difficulty=prefs.preferred_difficulty or DifficultyLevel.BEGINNER,
        completed_lesson_ids=frozenset(completed),
    )

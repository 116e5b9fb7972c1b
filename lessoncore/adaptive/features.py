"""
Context and Lesson Feature Extraction.

Maps a learner's context and a lesson's metadata into fixed-length numeric
vectors for the linear reward model.

Context features (10):
    1-5: Skill levels per domain (0-1)
    6:   Streak, capped at 30 days
    7:   Time of day (morning=0.25, afternoon=0.5, evening=0.75, night=1.0)
    8:   Session of day, capped at 5
    9:   Last lesson difficulty (0.33 / 0.66 / 1.0)
    10:  Last lesson accuracy (0-1)

Lesson features (10):
    1-5: One-hot domain
    6:   Difficulty
    7:   Estimated minutes, capped at 20
    8:   XP reward, capped at 200
    9:   Question count, capped at 15
    10:  Constant padding (0.5)

Both extractors are pure and never raise: missing or malformed fields become 0.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Sequence

from lessoncore.adaptive.models import (
    CONTEXT_DIMENSION,
    DifficultyLevel,
    LearningContext,
    Lesson,
    SkillDomain,
    TimeOfDay,
)

STREAK_CAP_DAYS = 30
SESSION_CAP = 5
MINUTES_CAP = 20
XP_CAP = 200
QUESTION_CAP = 15
LESSON_PADDING = 0.5


def _as_float(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _difficulty_value(value: Any) -> float:
    if isinstance(value, DifficultyLevel):
        return value.feature_value
    try:
        return DifficultyLevel(str(value)).feature_value
    except ValueError:
        return 0.0


def _time_of_day_value(value: Any) -> float:
    if isinstance(value, TimeOfDay):
        return value.feature_value
    try:
        return TimeOfDay(str(value)).feature_value
    except ValueError:
        return 0.5


def time_of_day_for(now: datetime) -> TimeOfDay:
    """Bucket a wall-clock time into a TimeOfDay."""
    hour = now.hour
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def extract_context_features(context: LearningContext) -> list[float]:
    """
    Convert a learning context into a 10-dimensional feature vector.

    Args:
        context: The learner's current context

    Returns:
        List of CONTEXT_DIMENSION floats
    """
    skills = getattr(context, "skill_levels", None)
    if skills is not None:
        normalized_skills = [_as_float(skills.get(domain)) / 100 for domain in SkillDomain]
    else:
        normalized_skills = [0.0] * len(SkillDomain)

    streak = min(_as_float(getattr(context, "current_streak", 0)) / STREAK_CAP_DAYS, 1.0)
    time_of_day = _time_of_day_value(getattr(context, "time_of_day", None))
    session = min(_as_float(getattr(context, "session_number", 0)) / SESSION_CAP, 1.0)
    last_difficulty = _difficulty_value(getattr(context, "last_lesson_difficulty", None))
    last_performance = _as_float(getattr(context, "last_lesson_performance", 0))

    return [
        *normalized_skills,
        streak,
        time_of_day,
        session,
        last_difficulty,
        last_performance,
    ]


def extract_lesson_features(lesson: Lesson) -> list[float]:
    """Convert lesson metadata into a 10-dimensional feature vector."""
    domain_vector = [0.0] * len(SkillDomain)
    domain = SkillDomain.parse(getattr(lesson, "domain", None))
    domain_vector[domain.index if domain is not None else 0] = 1.0

    return [
        *domain_vector,
        _difficulty_value(getattr(lesson, "difficulty", None)),
        min(_as_float(getattr(lesson, "estimated_minutes", 0)) / MINUTES_CAP, 1.0),
        min(_as_float(getattr(lesson, "xp_reward", 0)) / XP_CAP, 1.0),
        min(_as_float(getattr(lesson, "question_count", 0)) / QUESTION_CAP, 1.0),
        LESSON_PADDING,
    ]


def component(values: Sequence[Any] | None, index: int) -> float:
    """Component `index` of a vector as a finite float; missing or malformed is 0."""
    if values is None or index >= len(values):
        return 0.0
    return _as_float(values[index])


def dot(weights: Sequence[float], features: Sequence[float]) -> float:
    """
    Dot product over CONTEXT_DIMENSION slots.

    Short or missing components count as 0, so malformed vectors never raise.
    """
    total = 0.0
    for i in range(CONTEXT_DIMENSION):
        total += component(weights, i) * component(features, i)
    return total

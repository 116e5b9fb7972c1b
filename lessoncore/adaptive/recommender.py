"""
Recommendation Engine.

Ranks candidate lessons for a learner by combining:
- the bandit's UCB score (exploit what worked, explore what hasn't been tried)
- a weakness bonus that favours the learner's weaker domains
- a difficulty bonus that favours lessons near the learner's ideal tier

Ranking is deterministic: ties keep catalog order.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from loguru import logger

from lessoncore.adaptive.bandit import compute_alpha, compute_ucb_score
from lessoncore.adaptive.features import extract_context_features
from lessoncore.adaptive.models import (
    AdaptiveRecommendation,
    BanditState,
    Course,
    DifficultyLevel,
    LearningContext,
    Lesson,
)

WEAKNESS_DIVISOR = 500
DIFFICULTY_BONUS_MAX = 0.1
DIFFICULTY_BONUS_SLOPE = 0.05
IDEAL_WEIGHT = 0.6
PREFERRED_WEIGHT = 0.4

FUNDAMENTALS_THRESHOLD = 40
LEVEL_UP_THRESHOLD = 70
STREAK_THRESHOLD = 3
GOOD_FIT_SCORE = 0.8


def ideal_difficulty_tier(skill: float) -> int:
    """Tier a learner at this skill level should be working at."""
    if skill < FUNDAMENTALS_THRESHOLD:
        return 1
    if skill < LEVEL_UP_THRESHOLD:
        return 2
    return 3


def difficulty_match(
    lesson_difficulty: DifficultyLevel,
    skill: float,
    preferred_difficulty: DifficultyLevel,
) -> float:
    """
    Bonus for lessons close to the target tier.

    The target blends the skill-derived ideal tier (60%) with the learner's
    preferred tier (40%). Peaks at 0.1 and loses 0.05 per tier of distance.
    """
    target = (
        IDEAL_WEIGHT * ideal_difficulty_tier(skill)
        + PREFERRED_WEIGHT * preferred_difficulty.tier
    )
    return DIFFICULTY_BONUS_MAX - DIFFICULTY_BONUS_SLOPE * abs(lesson_difficulty.tier - target)


def weakness_bonus(skill: float) -> float:
    return (100 - skill) / WEAKNESS_DIVISOR


def recommendation_reason(
    lesson: Lesson,
    context: LearningContext,
    score: float,
) -> str:
    """Pick the first matching human-readable reason."""
    skill = context.skill_levels.get(lesson.domain)

    if skill < FUNDAMENTALS_THRESHOLD:
        return f"Build your {lesson.domain} fundamentals"
    if skill < LEVEL_UP_THRESHOLD:
        return f"Level up your {lesson.domain} skills"
    if lesson.difficulty == DifficultyLevel.ADVANCED:
        return "Challenge yourself with advanced concepts"
    if context.current_streak >= STREAK_THRESHOLD:
        return "Keep your streak going!"
    if score > GOOD_FIT_SCORE:
        return "Perfect for you right now"
    return "Continue your learning journey"


def score_lesson(
    lesson: Lesson,
    context: LearningContext,
    bandit_state: BanditState,
    context_features: Sequence[float],
    alpha: float,
) -> float:
    """Final ranking score for one candidate."""
    skill = context.skill_levels.get(lesson.domain)
    ucb = compute_ucb_score(bandit_state.params_for(lesson.id), context_features, alpha)
    return (
        ucb
        + weakness_bonus(skill)
        + difficulty_match(lesson.difficulty, skill, context.preferred_difficulty)
    )


def get_recommendations(
    context: LearningContext,
    bandit_state: BanditState,
    lessons: Iterable[Lesson],
    count: int = 3,
) -> list[AdaptiveRecommendation]:
    """
    Rank candidate lessons and return the top `count`.

    Args:
        context: The learner's current context
        bandit_state: The learner's bandit parameters
        lessons: Candidate lessons in catalog order
        count: Maximum recommendations to return

    Returns:
        Recommendations sorted by descending score
    """
    if count <= 0:
        return []

    features = extract_context_features(context)
    alpha = compute_alpha(bandit_state.total_pulls)

    scored: list[AdaptiveRecommendation] = []
    for lesson in lessons:
        if lesson.id in context.completed_lesson_ids:
            continue
        score = score_lesson(lesson, context, bandit_state, features, alpha)
        scored.append(
            AdaptiveRecommendation(
                lesson_id=lesson.id,
                course_id=lesson.course_id or "",
                score=score,
                reason=recommendation_reason(lesson, context, score),
            )
        )

    # sorted() is stable, so equal scores keep catalog order
    ranked = sorted(scored, key=lambda rec: rec.score, reverse=True)

    logger.debug(
        "Ranked {} candidates (alpha={:.3f}), returning top {}",
        len(ranked),
        alpha,
        min(count, len(ranked)),
    )
    return ranked[:count]


def available_lessons(
    courses: Iterable[Course],
    completed: Iterable[str] = (),
) -> list[Lesson]:
    """Uncompleted lessons across all courses, in catalog order."""
    done = set(completed)
    return [
        lesson
        for course in courses
        for lesson in course.lessons
        if lesson.id not in done
    ]

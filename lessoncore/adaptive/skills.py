"""
Skill Updater.

Moves one domain's skill score after a lesson. Accuracy above roughly one
third raises the score, below it lowers it; harder lessons move it further.
Gains are capped at +10 and losses at -5 per lesson.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from loguru import logger

from lessoncore.adaptive.models import DifficultyLevel, SkillDomain, SkillProfile
from lessoncore.adaptive.reward import clamp

BASELINE_ACCURACY = 0.33
CHANGE_SCALE = 15
MAX_GAIN = 10.0
MAX_LOSS = -5.0


def skill_change(accuracy: float, difficulty: DifficultyLevel) -> float:
    raw = (accuracy - BASELINE_ACCURACY) * CHANGE_SCALE * difficulty.skill_multiplier
    return clamp(raw, MAX_LOSS, MAX_GAIN)


def update_skill_levels(
    skills: SkillProfile,
    domain: str | SkillDomain,
    accuracy: float,
    difficulty: DifficultyLevel,
    now: datetime | None = None,
) -> SkillProfile:
    """
    Return a new profile with one domain adjusted.

    Args:
        skills: Current profile
        domain: Domain of the lesson just finished
        accuracy: Lesson accuracy (0-1)
        difficulty: Lesson difficulty
        now: Timestamp recorded as last_updated

    Returns:
        Updated profile; other domains are untouched
    """
    parsed = SkillDomain.parse(domain)
    if parsed is None:
        logger.warning("Unknown skill domain '{}', profile left unchanged", domain)
        return skills

    old = skills.get(parsed)
    new = clamp(old + skill_change(accuracy, difficulty), 0.0, 100.0)

    logger.debug("Skill {}: {:.1f} -> {:.1f}", parsed.value, old, new)
    return replace(skills, **{parsed.value: new}, last_updated=now)


def weakest_domain(skills: SkillProfile) -> SkillDomain:
    # min() returns the first of equal values, so ties go to domain order
    return min(SkillDomain, key=skills.get)


def strongest_domain(skills: SkillProfile) -> SkillDomain:
    return max(SkillDomain, key=skills.get)


def average_skill(skills: SkillProfile) -> float:
    vector = skills.as_vector()
    return sum(vector) / len(vector)

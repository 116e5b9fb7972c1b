"""
Domain models for the adaptive recommender.

All state objects are frozen dataclasses. Updates produce new instances
(state-in, state-out); nothing in this package mutates a model in place.
Persisted models provide to_dict/from_dict for JSON storage.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

# Features: 5 skill domains + streak + time of day + session + last difficulty + last accuracy
CONTEXT_DIMENSION = 10

DEFAULT_SKILL_LEVEL = 50.0
MIN_SKILL_LEVEL = 0.0
MAX_SKILL_LEVEL = 100.0


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# Enums
# =============================================================================


class SkillDomain(str, Enum):
    """Financial literacy skill domains, in feature-vector order."""

    BUDGETING = "budgeting"
    SAVING = "saving"
    DEBT = "debt"
    INVESTING = "investing"
    CREDIT = "credit"

    @property
    def index(self) -> int:
        """Position of this domain in skill and one-hot vectors."""
        return list(SkillDomain).index(self)

    @classmethod
    def parse(cls, value: str | SkillDomain | None) -> SkillDomain | None:
        """Return the matching domain, or None for unknown values."""
        if isinstance(value, SkillDomain):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class DifficultyLevel(str, Enum):
    """Lesson difficulty tier."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def tier(self) -> int:
        """Ordinal tier: beginner=1, intermediate=2, advanced=3."""
        return {
            DifficultyLevel.BEGINNER: 1,
            DifficultyLevel.INTERMEDIATE: 2,
            DifficultyLevel.ADVANCED: 3,
        }[self]

    @property
    def feature_value(self) -> float:
        """Normalized value used in feature vectors."""
        return {
            DifficultyLevel.BEGINNER: 0.33,
            DifficultyLevel.INTERMEDIATE: 0.66,
            DifficultyLevel.ADVANCED: 1.0,
        }[self]

    @property
    def skill_multiplier(self) -> float:
        """Harder lessons move skill scores further."""
        return {
            DifficultyLevel.BEGINNER: 1.0,
            DifficultyLevel.INTERMEDIATE: 1.5,
            DifficultyLevel.ADVANCED: 2.0,
        }[self]


class TimeOfDay(str, Enum):
    """Coarse time-of-day bucket."""

    MORNING = "morning"  # 05:00 - 11:59
    AFTERNOON = "afternoon"  # 12:00 - 16:59
    EVENING = "evening"  # 17:00 - 20:59
    NIGHT = "night"  # 21:00 - 04:59

    @property
    def feature_value(self) -> float:
        return {
            TimeOfDay.MORNING: 0.25,
            TimeOfDay.AFTERNOON: 0.5,
            TimeOfDay.EVENING: 0.75,
            TimeOfDay.NIGHT: 1.0,
        }[self]


# =============================================================================
# Learner State
# =============================================================================


def _skill_level(raw: Any) -> float:
    """Stored score clamped to 0-100; non-numeric values read as the default."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
        return DEFAULT_SKILL_LEVEL
    return min(MAX_SKILL_LEVEL, max(MIN_SKILL_LEVEL, float(raw)))


@dataclass(frozen=True)
class SkillProfile:
    """Per-domain skill scores (0-100)."""

    budgeting: float = DEFAULT_SKILL_LEVEL
    saving: float = DEFAULT_SKILL_LEVEL
    debt: float = DEFAULT_SKILL_LEVEL
    investing: float = DEFAULT_SKILL_LEVEL
    credit: float = DEFAULT_SKILL_LEVEL
    last_updated: datetime | None = None

    def get(self, domain: str | SkillDomain) -> float:
        """Skill for a domain, or the default level for unknown domains."""
        parsed = SkillDomain.parse(domain)
        if parsed is None:
            return DEFAULT_SKILL_LEVEL
        return float(getattr(self, parsed.value))

    def as_vector(self) -> list[float]:
        return [self.get(domain) for domain in SkillDomain]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {domain.value: self.get(domain) for domain in SkillDomain}
        data["last_updated"] = _format_datetime(self.last_updated)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SkillProfile:
        values: dict[str, Any] = {}
        for domain in SkillDomain:
            values[domain.value] = _skill_level(data.get(domain.value))
        return cls(**values, last_updated=_parse_datetime(data.get("last_updated")))


@dataclass(frozen=True)
class LearningContext:
    """
    Snapshot of a learner's situation at recommendation time.

    Rebuilt before every recommendation call and never persisted.
    """

    skill_levels: SkillProfile = field(default_factory=SkillProfile)
    current_streak: int = 0
    time_of_day: TimeOfDay = TimeOfDay.AFTERNOON
    session_number: int = 1
    last_lesson_difficulty: DifficultyLevel = DifficultyLevel.BEGINNER
    last_lesson_performance: float = 0.5
    preferred_difficulty: DifficultyLevel = DifficultyLevel.BEGINNER
    completed_lesson_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class LearnerPreferences:
    """Preferred difficulty plus the outcome of the most recent lesson."""

    preferred_difficulty: DifficultyLevel = DifficultyLevel.BEGINNER
    last_difficulty: DifficultyLevel = DifficultyLevel.BEGINNER
    last_accuracy: float = 0.5

    def to_dict(self) -> dict[str, Any]:
        return {
            "preferred_difficulty": self.preferred_difficulty.value,
            "last_difficulty": self.last_difficulty.value,
            "last_accuracy": self.last_accuracy,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LearnerPreferences:
        return cls(
            preferred_difficulty=DifficultyLevel(data.get("preferred_difficulty", "beginner")),
            last_difficulty=DifficultyLevel(data.get("last_difficulty", "beginner")),
            last_accuracy=float(data.get("last_accuracy", 0.5)),
        )


# =============================================================================
# Bandit State
# =============================================================================


@dataclass(frozen=True)
class LessonBanditParams:
    """Learned parameters for one arm (lesson)."""

    lesson_id: str
    pull_count: int = 0
    reward_sum: float = 0.0
    average_reward: float = 0.5  # Optimistic initial estimate
    theta: tuple[float, ...] = (0.0,) * CONTEXT_DIMENSION
    confidence: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "pull_count": self.pull_count,
            "reward_sum": self.reward_sum,
            "average_reward": self.average_reward,
            "theta": list(self.theta),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LessonBanditParams:
        theta = [float(v) for v in (data.get("theta") or [])][:CONTEXT_DIMENSION]
        theta += [0.0] * (CONTEXT_DIMENSION - len(theta))
        return cls(
            lesson_id=str(data["lesson_id"]),
            pull_count=max(0, int(data.get("pull_count", 0))),
            reward_sum=float(data.get("reward_sum", 0.0)),
            average_reward=float(data.get("average_reward", 0.5)),
            theta=tuple(theta),
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass(frozen=True)
class BanditState:
    """Per-user bandit state: arm parameters plus a global pull counter."""

    lesson_params: Mapping[str, LessonBanditParams] = field(default_factory=dict)
    total_pulls: int = 0
    last_updated: datetime | None = None

    def params_for(self, lesson_id: str) -> LessonBanditParams:
        """Stored parameters for a lesson, or fresh ones if never seen."""
        params = self.lesson_params.get(lesson_id)
        return params if params is not None else LessonBanditParams(lesson_id=lesson_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_params": {k: v.to_dict() for k, v in self.lesson_params.items()},
            "total_pulls": self.total_pulls,
            "last_updated": _format_datetime(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BanditState:
        raw_params = data.get("lesson_params") or {}
        params = {
            lesson_id: LessonBanditParams.from_dict({"lesson_id": lesson_id, **value})
            for lesson_id, value in raw_params.items()
        }
        return cls(
            lesson_params=params,
            total_pulls=max(0, int(data.get("total_pulls", 0))),
            last_updated=_parse_datetime(data.get("last_updated")),
        )


# =============================================================================
# Signals and Outputs
# =============================================================================


@dataclass(frozen=True)
class LessonReward:
    """Raw completion telemetry for one lesson attempt."""

    lesson_id: str
    accuracy: float
    completion_time: float  # seconds
    expected_time: float  # seconds
    completed: bool
    user_rating: int | None = None  # 1-5


@dataclass(frozen=True)
class AdaptiveRecommendation:
    """One ranked lesson suggestion."""

    lesson_id: str
    course_id: str
    score: float
    reason: str


# =============================================================================
# Catalog Entities
# =============================================================================


@dataclass(frozen=True)
class Lesson:
    """Lesson metadata used for features and recommendation."""

    id: str
    course_id: str
    domain: str
    difficulty: DifficultyLevel
    title: str = ""
    estimated_minutes: float = 5.0
    xp_reward: int = 50
    question_count: int = 0
    quiz_module_id: str | None = None


@dataclass(frozen=True)
class Course:
    id: str
    title: str = ""
    lessons: tuple[Lesson, ...] = ()


@dataclass(frozen=True)
class LessonAttemptLog:
    """Historical record of one lesson attempt."""

    lesson_id: str
    course_id: str
    start_time: datetime
    end_time: datetime
    questions_attempted: int
    questions_correct: int
    accuracy: float
    xp_earned: int = 0
    was_recommended: bool = False
    confidence_rating: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "course_id": self.course_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "questions_attempted": self.questions_attempted,
            "questions_correct": self.questions_correct,
            "accuracy": self.accuracy,
            "xp_earned": self.xp_earned,
            "was_recommended": self.was_recommended,
            "confidence_rating": self.confidence_rating,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LessonAttemptLog:
        start = _parse_datetime(data.get("start_time"))
        end = _parse_datetime(data.get("end_time"))
        if start is None or end is None:
            raise ValueError("Attempt log entry is missing timestamps")
        return cls(
            lesson_id=str(data["lesson_id"]),
            course_id=str(data.get("course_id", "")),
            start_time=start,
            end_time=end,
            questions_attempted=int(data.get("questions_attempted", 0)),
            questions_correct=int(data.get("questions_correct", 0)),
            accuracy=float(data.get("accuracy", 0.0)),
            xp_earned=int(data.get("xp_earned", 0)),
            was_recommended=bool(data.get("was_recommended", False)),
            confidence_rating=data.get("confidence_rating"),
        )

"""
Adaptive Recommendation Engine.

Contextual-bandit lesson recommendation with online learning.

Components:
- features: Context and lesson feature vectors
- reward: Turns completion telemetry into a bounded reward
- bandit: UCB scoring and per-lesson parameter updates
- recommender: Ranks lessons with weakness and difficulty bonuses
- skills: Per-domain skill score updates
- context: Builds the LearningContext snapshot
"""
from lessoncore.adaptive.models import (
    CONTEXT_DIMENSION,
    DEFAULT_SKILL_LEVEL,
    AdaptiveRecommendation,
    BanditState,
    Course,
    DifficultyLevel,
    LearnerPreferences,
    LearningContext,
    Lesson,
    LessonAttemptLog,
    LessonBanditParams,
    LessonReward,
    SkillDomain,
    SkillProfile,
    TimeOfDay,
)
from lessoncore.adaptive.features import (
    extract_context_features,
    extract_lesson_features,
    time_of_day_for,
)
from lessoncore.adaptive.reward import compute_reward
from lessoncore.adaptive.bandit import (
    compute_alpha,
    compute_ucb_score,
    create_initial_bandit_state,
    initialize_lesson_params,
    update_bandit_state,
    update_lesson_params,
)
from lessoncore.adaptive.recommender import available_lessons, get_recommendations
from lessoncore.adaptive.skills import (
    average_skill,
    strongest_domain,
    update_skill_levels,
    weakest_domain,
)
from lessoncore.adaptive.context import build_learning_context, count_today_sessions

__all__ = [
    # Models
    "CONTEXT_DIMENSION",
    "DEFAULT_SKILL_LEVEL",
    "AdaptiveRecommendation",
    "BanditState",
    "Course",
    "DifficultyLevel",
    "LearnerPreferences",
    "LearningContext",
    "Lesson",
    "LessonAttemptLog",
    "LessonBanditParams",
    "LessonReward",
    "SkillDomain",
    "SkillProfile",
    "TimeOfDay",
    # Features
    "extract_context_features",
    "extract_lesson_features",
    "time_of_day_for",
    # Bandit
    "compute_reward",
    "compute_alpha",
    "compute_ucb_score",
    "create_initial_bandit_state",
    "initialize_lesson_params",
    "update_bandit_state",
    "update_lesson_params",
    # Ranking
    "available_lessons",
    "get_recommendations",
    # Skills
    "average_skill",
    "strongest_domain",
    "update_skill_levels",
    "weakest_domain",
    # Context
    "build_learning_context",
    "count_today_sessions",
]

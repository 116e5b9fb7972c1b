"""
Reward Computation.

Turns lesson-completion telemetry into a bounded scalar reward in [0, 1]:
- accuracy is the base signal
- completion adds 0.1, abandonment subtracts 0.2
- fast and accurate (< half the expected time, accuracy >= 0.8) adds 0.1
- very slow (> twice the expected time) subtracts 0.1
- an optional 1-5 rating shifts the reward by (rating - 3) * 0.1
"""

from __future__ import annotations

import math

from lessoncore.adaptive.models import LessonReward

COMPLETION_BONUS = 0.1
ABANDON_PENALTY = 0.2
FAST_RATIO = 0.5
FAST_MIN_ACCURACY = 0.8
FAST_BONUS = 0.1
SLOW_RATIO = 2.0
SLOW_PENALTY = 0.1
RATING_NEUTRAL = 3
RATING_STEP = 0.1


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_reward(lesson_reward: LessonReward) -> float:
    """
    Compute the bandit reward for one lesson attempt.

    Args:
        lesson_reward: Completion data (times in seconds)

    Returns:
        Reward clamped to [0, 1]
    """
    accuracy = lesson_reward.accuracy
    if accuracy is None or not math.isfinite(accuracy):
        accuracy = 0.0

    reward = accuracy
    reward += COMPLETION_BONUS if lesson_reward.completed else -ABANDON_PENALTY

    if lesson_reward.expected_time and lesson_reward.expected_time > 0:
        time_ratio = lesson_reward.completion_time / lesson_reward.expected_time
        if time_ratio < FAST_RATIO and accuracy >= FAST_MIN_ACCURACY:
            reward += FAST_BONUS
        elif time_ratio > SLOW_RATIO:
            reward -= SLOW_PENALTY

    if lesson_reward.user_rating is not None:
        reward += (lesson_reward.user_rating - RATING_NEUTRAL) * RATING_STEP

    return clamp(reward, 0.0, 1.0)

"""
Contextual Bandit: UCB scoring and online parameter updates.

Each lesson is an arm with a linear reward model (theta) over the context
vector. Scoring adds an optimism bonus that shrinks as an arm is pulled.

This is the simplified stochastic-gradient variant, not covariance-matrix
LinUCB: predictions average the linear model with the arm's running average
reward, and theta is updated with a 1/sqrt(n) learning rate. The alpha
schedule and bonus weights in the recommender are tuned against this form.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from loguru import logger

from lessoncore.adaptive.features import component, dot, extract_context_features
from lessoncore.adaptive.models import (
    CONTEXT_DIMENSION,
    BanditState,
    LearningContext,
    LessonBanditParams,
    LessonReward,
)
from lessoncore.adaptive.reward import clamp, compute_reward

ALPHA_INITIAL = 2.5
ALPHA_MIN = 0.5
ALPHA_DECAY = 0.99

# Below this many pulls an arm gets the optimistic cold-start score
MIN_PULLS_FOR_CONFIDENCE = 3
COLD_START_BASE = 0.7


def create_initial_bandit_state(now: datetime | None = None) -> BanditState:
    """Fresh state for a new learner."""
    return BanditState(lesson_params={}, total_pulls=0, last_updated=now)


def initialize_lesson_params(lesson_id: str) -> LessonBanditParams:
    """Fresh parameters for an arm the learner has never seen."""
    return LessonBanditParams(lesson_id=lesson_id)


def compute_alpha(total_pulls: int) -> float:
    """
    Exploration coefficient.

    Starts at 2.5 and decays by 1% per pull, never dropping below 0.5.
    """
    pulls = max(0, int(total_pulls))
    return max(ALPHA_MIN, ALPHA_INITIAL * ALPHA_DECAY**pulls)


def confidence_bound(pull_count: int) -> float:
    """sqrt(ln(n + 1) / (n + 1)); shrinks as the arm accumulates pulls."""
    n = max(0, pull_count) + 1
    return math.sqrt(math.log(n) / n)


def compute_ucb_score(
    params: LessonBanditParams,
    context_features: Sequence[float],
    alpha: float,
) -> float:
    """
    Upper confidence bound score for one arm.

    Args:
        params: Stored parameters for the lesson
        context_features: Current context vector
        alpha: Exploration coefficient

    Returns:
        Predicted reward plus exploration bonus
    """
    if params.pull_count < MIN_PULLS_FOR_CONFIDENCE:
        return COLD_START_BASE + alpha / (max(0, params.pull_count) + 1)

    linear = dot(params.theta, context_features)
    predicted = clamp((linear + params.average_reward) / 2, 0.0, 1.0)
    return predicted + alpha * confidence_bound(params.pull_count)


def update_lesson_params(
    params: LessonBanditParams,
    context_features: Sequence[float],
    reward: float,
) -> LessonBanditParams:
    """
    Fold one observed reward into an arm's parameters.

    The pull count is incremented before it is used as a divisor, so there is
    no divide-by-zero path. Malformed feature components count as 0.
    """
    pull_count = max(0, params.pull_count) + 1
    reward_sum = params.reward_sum + reward
    average_reward = reward_sum / pull_count

    learning_rate = 1 / math.sqrt(pull_count)
    error = reward - dot(params.theta, context_features)

    theta = [component(params.theta, i) for i in range(CONTEXT_DIMENSION)]
    for i in range(CONTEXT_DIMENSION):
        theta[i] += learning_rate * error * component(context_features, i)

    return replace(
        params,
        pull_count=pull_count,
        reward_sum=reward_sum,
        average_reward=average_reward,
        theta=tuple(theta),
        confidence=confidence_bound(pull_count),
    )


def update_bandit_state(
    state: BanditState,
    lesson_id: str,
    context: LearningContext,
    lesson_reward: LessonReward,
    now: datetime | None = None,
) -> BanditState:
    """
    Apply one learning step and return the new bandit state.

    This is the only mutator of BanditState. total_pulls is incremented
    exactly once per call; the input state is left untouched.
    """
    features = extract_context_features(context)
    reward = compute_reward(lesson_reward)
    updated = update_lesson_params(state.params_for(lesson_id), features, reward)

    logger.debug(
        "Bandit update: lesson={} reward={:.3f} pulls={} avg={:.3f}",
        lesson_id,
        reward,
        updated.pull_count,
        updated.average_reward,
    )

    return BanditState(
        lesson_params={**state.lesson_params, lesson_id: updated},
        total_pulls=state.total_pulls + 1,
        last_updated=now,
    )

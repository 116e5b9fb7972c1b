"""
Quiz Mastery Engine.

Hard-first mastery testing with a penalty cascade:

1. Every concept is tested once with its HARD question.
2. Correct on hard: the concept is mastered.
3. Wrong on the initial hard test: EASY, MEDIUM and a HARD retry are appended
   to the queue (once per concept per session).
4. Wrong on a hard retry: only the hard retry is appended again.
5. Wrong on easy or medium: nothing is injected; the cascade continues.

Modules without concept variants run in legacy mode: every question is its own
concept at the hard tier and a wrong answer re-queues the same question.

All functions take a QuizState and return a new one. The queue only grows.
"""

from __future__ import annotations

import math
from dataclasses import replace

from loguru import logger

from lessoncore.exceptions import QuizStateError
from lessoncore.quiz.models import (
    COMPLETION_HEARTS,
    EASY_TIER,
    HARD_TIER,
    MEDIUM_TIER,
    PENALTY_XP_RATE,
    ConceptPhase,
    ConceptResult,
    ConceptVariant,
    QueuedQuestion,
    QuizCompletion,
    QuizModule,
    QuizState,
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def start_quiz(module: QuizModule, first_attempt: bool = True) -> QuizState:
    """
    Build the initial hard-first queue for a module.

    Args:
        module: Quiz module from the catalog
        first_attempt: Whether this learner has never completed the module.
            Captured here and never changed for the session.

    Returns:
        Fresh QuizState (already completed if the module has no questions)
    """
    queue: list[QueuedQuestion] = []

    if module.is_adaptive:
        concept_ids = tuple(c.concept_id for c in module.concept_variants)
        for concept in module.concept_variants:
            hard = module.get_question(concept.hard_question_id)
            if hard is None:
                logger.warning(
                    "Concept {} in module {} has no hard question, skipping",
                    concept.concept_id,
                    module.module_id,
                )
                continue
            queue.append(
                QueuedQuestion(
                    question=hard,
                    concept_id=concept.concept_id,
                    tier=HARD_TIER,
                    is_initial_hard_test=True,
                )
            )
    else:
        # Legacy: each question is its own concept at the hard tier
        concept_ids = tuple(q.id for q in module.questions)
        for question in module.questions:
            queue.append(
                QueuedQuestion(
                    question=question,
                    concept_id=question.id,
                    tier=HARD_TIER,
                    is_initial_hard_test=True,
                )
            )

    return QuizState(
        module_id=module.module_id,
        lesson_id=module.lesson_id,
        queue=tuple(queue),
        concept_ids=concept_ids,
        results={cid: ConceptResult(concept_id=cid) for cid in concept_ids},
        phases={cid: ConceptPhase.UNTESTED for cid in concept_ids},
        first_attempt=first_attempt,
        completed=not queue,
    )


def _record_attempt(result: ConceptResult, item: QueuedQuestion, is_correct: bool) -> ConceptResult:
    changes: dict[str, object] = {"total_attempts": result.total_attempts + 1}
    if item.is_initial_hard_test:
        changes["hard_attempt_correct"] = is_correct
    elif item.is_penalty:
        if item.tier == EASY_TIER:
            changes["easy_correct"] = is_correct
        elif item.tier == MEDIUM_TIER:
            changes["medium_correct"] = is_correct
        elif item.tier == HARD_TIER:
            changes["hard_retry_correct"] = is_correct
    return replace(result, **changes)


def build_cascade(module: QuizModule, concept: ConceptVariant) -> list[QueuedQuestion]:
    """
    Easy, medium and hard-retry slots for a failed concept.

    A missing easy or medium question is replaced by the hard question in
    that slot, so the cascade always has three items.
    """
    hard = module.get_question(concept.hard_question_id)
    if hard is None:
        return []

    slots = [
        (module.get_question(concept.easy_question_id), EASY_TIER, 0),
        (module.get_question(concept.medium_question_id), MEDIUM_TIER, 1),
        (hard, HARD_TIER, 2),
    ]
    cascade = []
    for question, tier, position in slots:
        if question is None:
            logger.debug(
                "Concept {} missing tier {} question, using hard stand-in",
                concept.concept_id,
                tier,
            )
            question = hard
        cascade.append(
            QueuedQuestion(
                question=question,
                concept_id=concept.concept_id,
                tier=tier,
                is_penalty=True,
                cascade_position=position,
            )
        )
    return cascade


def submit_answer(state: QuizState, module: QuizModule, is_correct: bool) -> QuizState:
    """
    Apply an answer to the current question.

    Raises:
        QuizStateError: If the quiz is complete or the current question was
            already answered
    """
    if state.completed:
        raise QuizStateError(f"Quiz {state.module_id} is already complete")
    if state.answered:
        raise QuizStateError("Current question was already answered; call advance() first")
    item = state.current
    if item is None:
        raise QuizStateError(f"No question at index {state.current_index}")

    cid = item.concept_id
    results = dict(state.results)
    phases = dict(state.phases)
    queue = list(state.queue)

    result = _record_attempt(results.get(cid, ConceptResult(concept_id=cid)), item, is_correct)
    phase = phases.get(cid, ConceptPhase.UNTESTED)

    xp_earned = state.xp_earned
    hearts_lost = state.hearts_lost
    total_correct = state.total_correct

    if is_correct:
        total_correct += 1
        if state.first_attempt:
            xp = module.xp_per_question
            xp_earned += _round_half_up(xp * PENALTY_XP_RATE) if item.is_penalty else xp

        if item.tier == HARD_TIER:
            if phase == ConceptPhase.IN_CASCADE:
                logger.debug("Concept {} remediated", cid)
            phase = ConceptPhase.MASTERED
            result = replace(result, mastered=True)
    else:
        hearts_lost += 1

        if item.is_initial_hard_test and module.is_adaptive:
            concept = module.get_concept(cid)
            if concept is not None and not result.cascade_triggered:
                queue.extend(build_cascade(module, concept))
                result = replace(result, cascade_triggered=True)
                if phase != ConceptPhase.MASTERED:
                    phase = ConceptPhase.IN_CASCADE
                logger.debug("Penalty cascade injected for concept {}", cid)
        elif item.is_penalty and item.tier == HARD_TIER:
            queue.append(item)
        elif item.is_initial_hard_test and not module.is_adaptive:
            queue.append(item)

    results[cid] = result
    phases[cid] = phase

    return replace(
        state,
        queue=tuple(queue),
        results=results,
        phases=phases,
        answered=True,
        last_correct=is_correct,
        xp_earned=xp_earned,
        hearts_lost=hearts_lost,
        total_correct=total_correct,
        total_attempts=state.total_attempts + 1,
        completed=False,
    )


def advance(state: QuizState) -> QuizState:
    """
    Move past the answered question.

    Completes the session when the queue is exhausted, even if some concepts
    are still unmastered.
    """
    if state.completed:
        raise QuizStateError(f"Quiz {state.module_id} is already complete")
    if not state.answered:
        raise QuizStateError("Current question has not been answered")

    at_end = state.current_index >= len(state.queue) - 1
    if at_end and not state.all_mastered:
        logger.info(
            "Quiz {} queue exhausted with {}/{} concepts mastered",
            state.module_id,
            len(state.mastered_concepts),
            len(state.concept_ids),
        )

    return replace(
        state,
        current_index=state.current_index if at_end else state.current_index + 1,
        answered=False,
        completed=at_end,
    )


def progress(state: QuizState) -> float:
    """Fraction of concepts mastered (0-1)."""
    if not state.concept_ids:
        return 0.0
    return len(state.mastered_concepts & set(state.concept_ids)) / len(state.concept_ids)


def summarize(state: QuizState, module: QuizModule) -> QuizCompletion:
    """
    Completion summary for a finished session.

    Replays report the same accuracy but earn no XP and no hearts.
    """
    if not state.completed:
        raise QuizStateError(f"Quiz {state.module_id} is still in progress")

    accuracy = state.accuracy
    return QuizCompletion(
        module_id=state.module_id,
        lesson_id=state.lesson_id,
        accuracy=accuracy,
        score=_round_half_up(accuracy * 100),
        total_attempts=state.total_attempts,
        total_correct=state.total_correct,
        all_mastered=state.all_mastered,
        passed=accuracy >= module.mastery_threshold,
        xp_earned=state.xp_earned if state.first_attempt else 0,
        hearts_earned=COMPLETION_HEARTS if state.first_attempt else 0,
        hearts_lost=state.hearts_lost,
        concept_results=dict(state.results),
    )

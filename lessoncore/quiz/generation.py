"""
Remediation text substitution.

An optional generator may rewrite the text of a queued question (for example
to phrase a cascade question differently). The substitution never changes
what the mastery engine relies on: concept id, tier, penalty flags and
cascade position are carried over unchanged.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from loguru import logger

from lessoncore.quiz.models import ConceptVariant, GenerationSource, QueuedQuestion, Question


class QuestionTextProvider(Protocol):
    """Produces alternate question text, or None to keep the catalog text."""

    def generate(self, question: Question, concept: ConceptVariant | None) -> str | None:
        ...


def apply_generated_text(
    item: QueuedQuestion,
    provider: QuestionTextProvider | None,
    concept: ConceptVariant | None = None,
) -> QueuedQuestion:
    """
    Return the queued question with generated text substituted in.

    Provider failures and empty results fall back to the catalog text.
    """
    if provider is None:
        return item

    try:
        text = provider.generate(item.question, concept)
    except Exception as e:
        logger.warning("Question generation failed for {}: {}", item.question.id, e)
        return item

    if not text or not text.strip():
        return item

    question = replace(item.question, text=text.strip(), source=GenerationSource.GENERATED)
    return replace(item, question=question)

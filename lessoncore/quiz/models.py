"""
Quiz models.

Catalog-side entities (Question, ConceptVariant, QuizModule) and the
session-side state threaded through the mastery engine (QueuedQuestion,
ConceptResult, QuizState, QuizCompletion), plus the per-learner records
kept across sessions (WrongAnswerEntry, DomainAccuracy,
ModuleProgress).
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

EASY_TIER = 1
MEDIUM_TIER = 2
HARD_TIER = 3

DEFAULT_MASTERY_THRESHOLD = 0.8
DEFAULT_XP_PER_QUESTION = 10
COMPLETION_HEARTS = 5
PENALTY_XP_RATE = 0.5


class GenerationSource(str, Enum):
    """Where a question's text came from."""

    CATALOG = "catalog"
    GENERATED = "generated"


class ConceptPhase(str, Enum):
    """
    Per-concept mastery phase.

    UNTESTED -> MASTERED, or
    UNTESTED -> IN_CASCADE -> MASTERED (hard retry may repeat).
    """

    UNTESTED = "untested"
    IN_CASCADE = "in_cascade"
    MASTERED = "mastered"


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    tier: int = HARD_TIER
    explanation: str | None = None
    source: GenerationSource = GenerationSource.CATALOG

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "tier": self.tier,
            "explanation": self.explanation,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Question:
        return cls(
            id=str(data["id"]),
            text=str(data.get("text", "")),
            tier=int(data.get("tier", HARD_TIER)),
            explanation=data.get("explanation"),
            source=GenerationSource(data.get("source", GenerationSource.CATALOG.value)),
        )


@dataclass(frozen=True)
class ConceptVariant:
    """A concept taught at three difficulty tiers."""

    concept_id: str
    name: str
    group: str
    domain: str
    easy_question_id: str | None
    medium_question_id: str | None
    hard_question_id: str


@dataclass(frozen=True)
class QuizModule:
    module_id: str
    lesson_id: str
    questions: tuple[Question, ...] = ()
    concept_variants: tuple[ConceptVariant, ...] = ()
    mastery_threshold: float = DEFAULT_MASTERY_THRESHOLD
    xp_per_question: int = DEFAULT_XP_PER_QUESTION

    @property
    def is_adaptive(self) -> bool:
        """True when the module defines concept variants."""
        return bool(self.concept_variants)

    def get_question(self, question_id: str | None) -> Question | None:
        if question_id is None:
            return None
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def get_concept(self, concept_id: str) -> ConceptVariant | None:
        for concept in self.concept_variants:
            if concept.concept_id == concept_id:
                return concept
        return None


# =============================================================================
# Session State
# =============================================================================


@dataclass(frozen=True)
class QueuedQuestion:
    """One slot in the session's append-only question queue."""

    question: Question
    concept_id: str
    tier: int
    is_penalty: bool = False
    is_initial_hard_test: bool = False
    cascade_position: int | None = None  # 0=easy, 1=medium, 2=hard retry

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question.to_dict(),
            "concept_id": self.concept_id,
            "tier": self.tier,
            "is_penalty": self.is_penalty,
            "is_initial_hard_test": self.is_initial_hard_test,
            "cascade_position": self.cascade_position,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QueuedQuestion:
        return cls(
            question=Question.from_dict(data["question"]),
            concept_id=str(data["concept_id"]),
            tier=int(data["tier"]),
            is_penalty=bool(data.get("is_penalty", False)),
            is_initial_hard_test=bool(data.get("is_initial_hard_test", False)),
            cascade_position=data.get("cascade_position"),
        )


@dataclass(frozen=True)
class ConceptResult:
    """Per-concept outcome record for one session."""

    concept_id: str
    hard_attempt_correct: bool | None = None
    cascade_triggered: bool = False
    easy_correct: bool | None = None
    medium_correct: bool | None = None
    hard_retry_correct: bool | None = None
    total_attempts: int = 0
    mastered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "concept_id": self.concept_id,
            "hard_attempt_correct": self.hard_attempt_correct,
            "cascade_triggered": self.cascade_triggered,
            "easy_correct": self.easy_correct,
            "medium_correct": self.medium_correct,
            "hard_retry_correct": self.hard_retry_correct,
            "total_attempts": self.total_attempts,
            "mastered": self.mastered,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConceptResult:
        return cls(
            concept_id=str(data["concept_id"]),
            hard_attempt_correct=data.get("hard_attempt_correct"),
            cascade_triggered=bool(data.get("cascade_triggered", False)),
            easy_correct=data.get("easy_correct"),
            medium_correct=data.get("medium_correct"),
            hard_retry_correct=data.get("hard_retry_correct"),
            total_attempts=int(data.get("total_attempts", 0)),
            mastered=bool(data.get("mastered", False)),
        )


@dataclass(frozen=True)
class QuizState:
    """
    Immutable snapshot of a running quiz session.

    `answered` is True between submit_answer and advance. `first_attempt` is
    captured once at session start and gates all XP and hearts.
    `session_id` identifies the session so its completion is folded into
    learner state only once.
    """

    module_id: str
    lesson_id: str
    queue: tuple[QueuedQuestion, ...]
    concept_ids: tuple[str, ...]
    results: Mapping[str, ConceptResult]
    phases: Mapping[str, ConceptPhase]
    first_attempt: bool = True
    current_index: int = 0
    answered: bool = False
    last_correct: bool | None = None
    xp_earned: int = 0
    hearts_lost: int = 0
    total_correct: int = 0
    total_attempts: int = 0
    completed: bool = False
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def current(self) -> QueuedQuestion | None:
        if 0 <= self.current_index < len(self.queue):
            return self.queue[self.current_index]
        return None

    @property
    def mastered_concepts(self) -> frozenset[str]:
        return frozenset(
            cid for cid, phase in self.phases.items() if phase == ConceptPhase.MASTERED
        )

    @property
    def all_mastered(self) -> bool:
        return all(self.phases.get(cid) == ConceptPhase.MASTERED for cid in self.concept_ids)

    @property
    def accuracy(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.total_correct / self.total_attempts

    def to_dict(self) -> dict[str, Any]:
        return {
            "module_id": self.module_id,
            "lesson_id": self.lesson_id,
            "queue": [item.to_dict() for item in self.queue],
            "concept_ids": list(self.concept_ids),
            "results": {cid: r.to_dict() for cid, r in self.results.items()},
            "phases": {cid: p.value for cid, p in self.phases.items()},
            "first_attempt": self.first_attempt,
            "current_index": self.current_index,
            "answered": self.answered,
            "last_correct": self.last_correct,
            "xp_earned": self.xp_earned,
            "hearts_lost": self.hearts_lost,
            "total_correct": self.total_correct,
            "total_attempts": self.total_attempts,
            "completed": self.completed,
            "session_id": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QuizState:
        return cls(
            module_id=str(data["module_id"]),
            lesson_id=str(data["lesson_id"]),
            queue=tuple(QueuedQuestion.from_dict(item) for item in data.get("queue", [])),
            concept_ids=tuple(data.get("concept_ids", [])),
            results={
                cid: ConceptResult.from_dict(r) for cid, r in (data.get("results") or {}).items()
            },
            phases={cid: ConceptPhase(p) for cid, p in (data.get("phases") or {}).items()},
            first_attempt=bool(data.get("first_attempt", True)),
            current_index=int(data.get("current_index", 0)),
            answered=bool(data.get("answered", False)),
            last_correct=data.get("last_correct"),
            xp_earned=int(data.get("xp_earned", 0)),
            hearts_lost=int(data.get("hearts_lost", 0)),
            total_correct=int(data.get("total_correct", 0)),
            total_attempts=int(data.get("total_attempts", 0)),
            completed=bool(data.get("completed", False)),
            session_id=str(data.get("session_id") or uuid.uuid4().hex),
        )


@dataclass(frozen=True)
class QuizCompletion:
    """Summary produced once the queue is exhausted."""

    module_id: str
    lesson_id: str
    accuracy: float
    score: int  # 0-100
    total_attempts: int
    total_correct: int
    all_mastered: bool
    passed: bool
    xp_earned: int
    hearts_earned: int
    hearts_lost: int
    concept_results: Mapping[str, ConceptResult] = field(default_factory=dict)


# =============================================================================
# Learner Quiz Records
# =============================================================================


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: Any) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class WrongAnswerEntry:
    """
    A concept the learner missed on its initial hard test.

    Registered when the penalty cascade starts and marked remediated when a
    hard retry for the concept is answered correctly.
    """

    concept_id: str
    question_id: str
    lesson_id: str
    variant_question_id: str | None = None
    timestamp: datetime | None = None
    remediation_complete: bool = False

    @property
    def requires_remediation(self) -> bool:
        return not self.remediation_complete

    def to_dict(self) -> dict[str, Any]:
        return {
            "concept_id": self.concept_id,
            "question_id": self.question_id,
            "lesson_id": self.lesson_id,
            "variant_question_id": self.variant_question_id,
            "timestamp": _iso(self.timestamp),
            "remediation_complete": self.remediation_complete,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WrongAnswerEntry:
        return cls(
            concept_id=str(data["concept_id"]),
            question_id=str(data["question_id"]),
            lesson_id=str(data.get("lesson_id", "")),
            variant_question_id=data.get("variant_question_id"),
            timestamp=_from_iso(data.get("timestamp")),
            remediation_complete=bool(data.get("remediation_complete", False)),
        )


@dataclass(frozen=True)
class DomainAccuracy:
    """Running correct/total answer tally for one skill domain."""

    correct: int = 0
    total: int = 0

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return int(math.floor(self.correct / self.total * 100 + 0.5))

    def to_dict(self) -> dict[str, Any]:
        return {"correct": self.correct, "total": self.total}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DomainAccuracy:
        return cls(correct=int(data.get("correct", 0)), total=int(data.get("total", 0)))


@dataclass(frozen=True)
class ModuleProgress:
    """Attempt history for one quiz module, gated on its mastery threshold."""

    module_id: str
    attempts: int = 0
    score: int = 0
    best_score: int = 0
    mastery_achieved: bool = False
    last_attempt: datetime | None = None

    @property
    def status(self) -> str:
        if self.mastery_achieved:
            return "completed"
        return "in_progress" if self.attempts else "not_started"

    def to_dict(self) -> dict[str, Any]:
        return {
            "module_id": self.module_id,
            "attempts": self.attempts,
            "score": self.score,
            "best_score": self.best_score,
            "mastery_achieved": self.mastery_achieved,
            "last_attempt": _iso(self.last_attempt),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ModuleProgress:
        return cls(
            module_id=str(data["module_id"]),
            attempts=int(data.get("attempts", 0)),
            score=int(data.get("score", 0)),
            best_score=int(data.get("best_score", 0)),
            mastery_achieved=bool(data.get("mastery_achieved", False)),
            last_attempt=_from_iso(data.get("last_attempt")),
        )

"""
Quiz Mastery Engine.

Hard-first concept testing with easy/medium/hard penalty cascades.
"""
from lessoncore.quiz.models import (
    ConceptPhase,
    ConceptResult,
    ConceptVariant,
    DomainAccuracy,
    GenerationSource,
    ModuleProgress,
    QueuedQuestion,
    Question,
    QuizCompletion,
    QuizModule,
    QuizState,
    WrongAnswerEntry,
)
from lessoncore.quiz.mastery_engine import (
    advance,
    build_cascade,
    progress,
    start_quiz,
    submit_answer,
    summarize,
)
from lessoncore.quiz.generation import QuestionTextProvider, apply_generated_text

__all__ = [
    "ConceptPhase",
    "ConceptResult",
    "ConceptVariant",
    "DomainAccuracy",
    "GenerationSource",
    "ModuleProgress",
    "QueuedQuestion",
    "Question",
    "QuizCompletion",
    "QuizModule",
    "QuizState",
    "WrongAnswerEntry",
    "advance",
    "build_cascade",
    "progress",
    "start_quiz",
    "submit_answer",
    "summarize",
    "QuestionTextProvider",
    "apply_generated_text",
]

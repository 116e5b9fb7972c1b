"""
Course Catalog loader.

Reads courses, lessons and quiz modules from a JSON document:

    {
      "courses": [
        {
          "id": "money-foundations",
          "title": "Money Foundations",
          "lessons": [
            {
              "id": "mf-budget-basics",
              "title": "Budget Basics",
              "domain": "budgeting",
              "difficulty": "beginner",
              "estimated_minutes": 5,
              "xp_reward": 50,
              "quiz": {
                "module_id": "mf-budget-basics-quiz",
                "mastery_threshold": 0.8,
                "xp_per_question": 10,
                "questions": [{"id": "q1", "text": "...", "tier": 3}],
                "concept_variants": [
                  {"concept_id": "c1", "name": "...", "group": "...",
                   "easy_question_id": "q1e", "medium_question_id": "q1m",
                   "hard_question_id": "q1"}
                ]
              }
            }
          ]
        }
      ]
    }

Catalog order (courses, then lessons) is preserved and is the tie-breaker
for equal recommendation scores. Malformed documents raise CatalogError.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from loguru import logger

from lessoncore.adaptive.models import Course, DifficultyLevel, Lesson, SkillDomain
from lessoncore.exceptions import CatalogError
from lessoncore.quiz.models import (
    DEFAULT_MASTERY_THRESHOLD,
    DEFAULT_XP_PER_QUESTION,
    HARD_TIER,
    ConceptVariant,
    Question,
    QuizModule,
)

SAMPLE_CATALOG_PATH = Path(__file__).parent / "data" / "sample_catalog.json"


class Catalog:
    """In-memory catalog with lookups by lesson and quiz module."""

    def __init__(self, courses: Iterable[Course], quiz_modules: Iterable[QuizModule] = ()):
        self.courses: tuple[Course, ...] = tuple(courses)
        self._lessons: dict[str, Lesson] = {}
        self._course_by_lesson: dict[str, Course] = {}
        for course in self.courses:
            for lesson in course.lessons:
                if lesson.id in self._lessons:
                    raise CatalogError(f"Duplicate lesson id: {lesson.id}")
                self._lessons[lesson.id] = lesson
                self._course_by_lesson[lesson.id] = course

        self._modules: dict[str, QuizModule] = {}
        self._module_by_lesson: dict[str, QuizModule] = {}
        for module in quiz_modules:
            if module.module_id in self._modules:
                raise CatalogError(f"Duplicate quiz module id: {module.module_id}")
            self._modules[module.module_id] = module
            self._module_by_lesson[module.lesson_id] = module

    def __len__(self) -> int:
        return len(self._lessons)

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        return self._lessons.get(lesson_id)

    def get_course_for_lesson(self, lesson_id: str) -> Course | None:
        return self._course_by_lesson.get(lesson_id)

    def get_quiz_module(self, module_id: str) -> QuizModule | None:
        return self._modules.get(module_id)

    def get_quiz_for_lesson(self, lesson_id: str) -> QuizModule | None:
        return self._module_by_lesson.get(lesson_id)

    def all_lessons(self) -> list[Lesson]:
        """Every lesson in catalog order."""
        return [lesson for course in self.courses for lesson in course.lessons]

    def available_lessons(self, completed: Iterable[str] = ()) -> list[Lesson]:
        """Uncompleted lessons in catalog order."""
        done = set(completed)
        return [lesson for lesson in self.all_lessons() if lesson.id not in done]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Catalog:
        raw_courses = data.get("courses")
        if not isinstance(raw_courses, list):
            raise CatalogError("Catalog must contain a 'courses' list")

        courses: list[Course] = []
        modules: list[QuizModule] = []
        for raw_course in raw_courses:
            course_id = _require_str(raw_course, "id", "course")
            lessons: list[Lesson] = []
            for raw_lesson in raw_course.get("lessons") or []:
                lesson, module = _parse_lesson(raw_lesson, course_id)
                lessons.append(lesson)
                if module is not None:
                    modules.append(module)
            courses.append(
                Course(id=course_id, title=str(raw_course.get("title", "")), lessons=tuple(lessons))
            )

        return cls(courses, modules)


def _require_str(data: Any, key: str, what: str) -> str:
    if not isinstance(data, Mapping):
        raise CatalogError(f"Expected an object for {what}, got {type(data).__name__}")
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise CatalogError(f"{what.capitalize()} is missing '{key}'")
    return value


def _parse_lesson(data: Any, course_id: str) -> tuple[Lesson, QuizModule | None]:
    lesson_id = _require_str(data, "id", "lesson")

    domain = str(data.get("domain", "")).lower()
    if SkillDomain.parse(domain) is None:
        # Unknown domains are allowed; features map them to the first slot
        logger.warning("Lesson {} has unknown domain '{}'", lesson_id, domain)

    try:
        difficulty = DifficultyLevel(str(data.get("difficulty", "beginner")).lower())
    except ValueError as e:
        raise CatalogError(f"Lesson {lesson_id} has invalid difficulty: {data.get('difficulty')}") from e

    module = None
    if data.get("quiz") is not None:
        module = _parse_quiz(data["quiz"], lesson_id)

    try:
        lesson = Lesson(
            id=lesson_id,
            course_id=course_id,
            domain=domain,
            difficulty=difficulty,
            title=str(data.get("title", "")),
            estimated_minutes=float(data.get("estimated_minutes", 5)),
            xp_reward=int(data.get("xp_reward", 50)),
            question_count=int(
                data.get("question_count", len(module.questions) if module else 0)
            ),
            quiz_module_id=module.module_id if module else None,
        )
    except (TypeError, ValueError) as e:
        raise CatalogError(f"Lesson {lesson_id} has an invalid numeric field: {e}") from e

    return lesson, module


def _parse_quiz(data: Any, lesson_id: str) -> QuizModule:
    module_id = _require_str(data, "module_id", "quiz module")

    questions: list[Question] = []
    seen: set[str] = set()
    for raw in data.get("questions") or []:
        question_id = _require_str(raw, "id", "question")
        if question_id in seen:
            raise CatalogError(f"Duplicate question id {question_id} in {module_id}")
        seen.add(question_id)
        try:
            tier = int(raw.get("tier", HARD_TIER))
        except (TypeError, ValueError) as e:
            raise CatalogError(f"Question {question_id} has an invalid tier") from e
        questions.append(
            Question(
                id=question_id,
                text=str(raw.get("text", "")),
                tier=tier,
                explanation=raw.get("explanation"),
            )
        )

    variants: list[ConceptVariant] = []
    for raw in data.get("concept_variants") or []:
        concept_id = _require_str(raw, "concept_id", "concept variant")
        hard_id = _require_str(raw, "hard_question_id", "concept variant")
        if hard_id not in seen:
            raise CatalogError(
                f"Concept {concept_id} in {module_id} references missing hard question {hard_id}"
            )
        variants.append(
            ConceptVariant(
                concept_id=concept_id,
                name=str(raw.get("name", concept_id)),
                group=str(raw.get("group", "")),
                domain=str(raw.get("domain", "")),
                easy_question_id=raw.get("easy_question_id"),
                medium_question_id=raw.get("medium_question_id"),
                hard_question_id=hard_id,
            )
        )

    try:
        mastery_threshold = float(data.get("mastery_threshold", DEFAULT_MASTERY_THRESHOLD))
        xp_per_question = int(data.get("xp_per_question", DEFAULT_XP_PER_QUESTION))
    except (TypeError, ValueError) as e:
        raise CatalogError(f"Quiz module {module_id} has an invalid numeric field: {e}") from e

    return QuizModule(
        module_id=module_id,
        lesson_id=lesson_id,
        questions=tuple(questions),
        concept_variants=tuple(variants),
        mastery_threshold=mastery_threshold,
        xp_per_question=xp_per_question,
    )


def load_catalog(path: Path | str | None = None) -> Catalog:
    """
    Load a catalog from a JSON file.

    Args:
        path: Catalog file (defaults to the bundled sample catalog)

    Raises:
        CatalogError: If the file is missing, not JSON, or malformed
    """
    catalog_path = Path(path) if path else SAMPLE_CATALOG_PATH
    try:
        data = json.loads(catalog_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise CatalogError(f"Catalog not found: {catalog_path}") from e
    except json.JSONDecodeError as e:
        raise CatalogError(f"Catalog {catalog_path} is not valid JSON: {e}") from e

    catalog = Catalog.from_dict(data)
    logger.info("Loaded catalog {} ({} lessons)", catalog_path.name, len(catalog))
    return catalog

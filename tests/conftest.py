"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from lessoncore.adaptive.models import (  # noqa: E402
    Course,
    DifficultyLevel,
    LearningContext,
    Lesson,
    SkillProfile,
    TimeOfDay,
)
from lessoncore.catalog.loader import Catalog, load_catalog  # noqa: E402
from lessoncore.quiz.models import ConceptVariant, Question, QuizModule  # noqa: E402
from lessoncore.store.kv import InMemoryStore  # noqa: E402
from lessoncore.store.repository import LearnerRepository  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (full learning loop)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fixed_now():
    """A Tuesday afternoon."""
    return datetime(2026, 3, 10, 14, 30)


@pytest.fixture
def clock(fixed_now):
    """Clock that always returns fixed_now."""
    return lambda: fixed_now


@pytest.fixture
def default_context():
    """Context for a brand-new learner."""
    return LearningContext(
        skill_levels=SkillProfile(),
        current_streak=0,
        time_of_day=TimeOfDay.AFTERNOON,
        session_number=1,
        last_lesson_difficulty=DifficultyLevel.BEGINNER,
        last_lesson_performance=0.5,
        preferred_difficulty=DifficultyLevel.BEGINNER,
    )


@pytest.fixture
def adaptive_module():
    """Quiz module with two concepts; the second has no medium question."""
    return QuizModule(
        module_id="budget-quiz",
        lesson_id="budget-basics",
        questions=(
            Question(id="c1-easy", text="Easy 1", tier=1),
            Question(id="c1-medium", text="Medium 1", tier=2),
            Question(id="c1-hard", text="Hard 1", tier=3),
            Question(id="c2-easy", text="Easy 2", tier=1),
            Question(id="c2-hard", text="Hard 2", tier=3),
        ),
        concept_variants=(
            ConceptVariant(
                concept_id="c1",
                name="Concept One",
                group="g1",
                domain="budgeting",
                easy_question_id="c1-easy",
                medium_question_id="c1-medium",
                hard_question_id="c1-hard",
            ),
            ConceptVariant(
                concept_id="c2",
                name="Concept Two",
                group="g1",
                domain="budgeting",
                easy_question_id="c2-easy",
                medium_question_id=None,
                hard_question_id="c2-hard",
            ),
        ),
        xp_per_question=10,
    )


@pytest.fixture
def legacy_module():
    """Quiz module without concept variants."""
    return QuizModule(
        module_id="legacy-quiz",
        lesson_id="legacy-lesson",
        questions=(
            Question(id="q1", text="First"),
            Question(id="q2", text="Second"),
        ),
    )


@pytest.fixture
def small_catalog(adaptive_module, legacy_module):
    """Two courses, four lessons, two with quizzes."""
    budgeting = Course(
        id="foundations",
        title="Foundations",
        lessons=(
            Lesson(
                id="budget-basics",
                course_id="foundations",
                domain="budgeting",
                difficulty=DifficultyLevel.BEGINNER,
                title="Budget Basics",
                estimated_minutes=5,
                question_count=5,
                quiz_module_id="budget-quiz",
            ),
            Lesson(
                id="legacy-lesson",
                course_id="foundations",
                domain="saving",
                difficulty=DifficultyLevel.BEGINNER,
                title="Saving Basics",
                estimated_minutes=5,
                question_count=2,
                quiz_module_id="legacy-quiz",
            ),
        ),
    )
    investing = Course(
        id="investing",
        title="Investing",
        lessons=(
            Lesson(
                id="compound",
                course_id="investing",
                domain="investing",
                difficulty=DifficultyLevel.INTERMEDIATE,
                title="Compound Interest",
                estimated_minutes=10,
                question_count=8,
            ),
            Lesson(
                id="options",
                course_id="investing",
                domain="investing",
                difficulty=DifficultyLevel.ADVANCED,
                title="Options",
                estimated_minutes=15,
                question_count=10,
            ),
        ),
    )
    return Catalog([budgeting, investing], [adaptive_module, legacy_module])


@pytest.fixture
def sample_catalog():
    """The bundled sample catalog."""
    return load_catalog()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def repository(memory_store):
    """Learner repository over an in-memory store."""
    return LearnerRepository(memory_store)

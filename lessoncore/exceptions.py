"""
Exception hierarchy for lessoncore.

Only load-time and programmer errors raise. Runtime boundary failures
(telemetry, remote sync, corrupt persisted values) are logged and degraded.
"""

from __future__ import annotations


class LessonCoreError(Exception):
    """Base class for all lessoncore errors."""


class CatalogError(LessonCoreError):
    """Catalog document is malformed or references missing entities."""


class QuizStateError(LessonCoreError):
    """An operation was applied to a quiz state that cannot accept it."""


class StoreError(LessonCoreError):
    """The underlying key-value store failed."""

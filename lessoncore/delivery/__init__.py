"""Delivery: attempt telemetry and remote progress sync."""
from lessoncore.delivery.telemetry import (
    AttemptEvent,
    JsonlTelemetrySink,
    MemoryTelemetrySink,
    TelemetrySink,
    emit_best_effort,
)
from lessoncore.delivery.progress_sync import (
    DebouncedProgressSync,
    Debouncer,
    ProgressSnapshot,
    ProgressSyncClient,
)

__all__ = [
    "AttemptEvent",
    "JsonlTelemetrySink",
    "MemoryTelemetrySink",
    "TelemetrySink",
    "emit_best_effort",
    "DebouncedProgressSync",
    "Debouncer",
    "ProgressSnapshot",
    "ProgressSyncClient",
]

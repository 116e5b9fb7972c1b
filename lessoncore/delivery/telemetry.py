"""
Attempt Telemetry.

One record per answered question, written fire-and-forget. A failing sink is
logged and ignored; the learning loop never waits on or fails because of it.

File Structure:
    ~/.lessoncore/telemetry/
        2026-10-19_attempts.jsonl  # One event per line, one file per day
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from loguru import logger


@dataclass
class AttemptEvent:
    """A single answered question."""

    user_id: str
    lesson_id: str
    module_id: str
    question_id: str
    concept_id: str
    domain: str | None
    tier: int
    is_correct: bool
    response_ms: int
    attempt_number: int
    is_penalty: bool
    cascade_position: int | None
    generation_source: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class TelemetrySink(Protocol):
    def emit(self, event: AttemptEvent) -> None:
        ...


class MemoryTelemetrySink:
    """Collects events in a list."""

    def __init__(self):
        self.events: list[AttemptEvent] = []

    def emit(self, event: AttemptEvent) -> None:
        self.events.append(event)


class JsonlTelemetrySink:
    """Appends events as JSON lines, one file per calendar day."""

    def __init__(self, log_dir: Path | None = None):
        """
        Args:
            log_dir: Directory for telemetry files (default: ~/.lessoncore/telemetry)
        """
        self.log_dir = log_dir or (Path.home() / ".lessoncore" / "telemetry")
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, moment: datetime) -> Path:
        return self.log_dir / f"{moment.strftime('%Y-%m-%d')}_attempts.jsonl"

    def emit(self, event: AttemptEvent) -> None:
        with open(self.path_for(event.timestamp), "a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), default=str) + "\n")


def emit_best_effort(sink: TelemetrySink | None, event: AttemptEvent) -> bool:
    """
    Send an event, swallowing sink failures.

    Returns:
        True if the sink accepted the event
    """
    if sink is None:
        return False
    try:
        sink.emit(event)
        return True
    except Exception as e:
        logger.error(f"Failed to write telemetry event: {e}")
        return False

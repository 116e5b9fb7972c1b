"""
Lessoncore: adaptive learning core.

This package contains the learning logic behind lesson selection and quiz mastery:
- adaptive: contextual bandit recommender, reward signal, skill profile updates
- quiz: hard-first mastery state machine with penalty cascades
- learning: orchestration of a full learn -> quiz -> feedback loop
- store: key-value persistence for learner state
- delivery: attempt telemetry and debounced progress sync
- catalog: course/lesson/quiz catalog loading
"""

__version__ = "1.0.0"

"""Session orchestration for the adaptive learning loop."""
from lessoncore.learning.learning_loop import LearnerSnapshot, LearningLoop

__all__ = ["LearnerSnapshot", "LearningLoop"]

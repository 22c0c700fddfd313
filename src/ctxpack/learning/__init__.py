"""Feedback learning: scorer weights and co-access affinity from session logs."""

from ctxpack.learning.learner import FeedbackLearner, Outcome, SessionLog
from ctxpack.learning.model import LearningModel

__all__ = ["FeedbackLearner", "LearningModel", "Outcome", "SessionLog"]

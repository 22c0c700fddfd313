"""Relevance scoring: task classification and per-artifact feature scores."""

from ctxpack.scoring.classifier import KeywordTaskClassifier, TaskClassifier, extract_terms
from ctxpack.scoring.scorer import RelevanceScorer, ScoredArtifact

__all__ = [
    "KeywordTaskClassifier",
    "RelevanceScorer",
    "ScoredArtifact",
    "TaskClassifier",
    "extract_terms",
]

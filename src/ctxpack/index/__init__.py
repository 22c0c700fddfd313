"""Codebase indexing: artifacts, reference edges and the dependency graph."""

from ctxpack.index.indexer import CodebaseIndexer, importance
from ctxpack.index.models import (
    Artifact,
    ArtifactType,
    CodebaseIndex,
    PatternMatch,
    VirtualFile,
)

__all__ = [
    "Artifact",
    "ArtifactType",
    "CodebaseIndex",
    "CodebaseIndexer",
    "PatternMatch",
    "VirtualFile",
    "importance",
]

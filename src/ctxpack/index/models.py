"""Data models for the codebase index."""

from __future__ import annotations

import time
from collections import Counter
from enum import Enum
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Mapping

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field


class ArtifactType(str, Enum):
    """Coarse role of an artifact in the repository."""

    SOURCE = "source"
    CONFIG = "config"
    TEST = "test"
    DOC = "doc"
    ENTRY_POINT = "entry-point"


class Artifact(BaseModel):
    """An indexed repository unit with computed size and importance."""

    model_config = ConfigDict(frozen=True)

    path: str  # POSIX path relative to the root
    size: int  # Tokens
    type: ArtifactType
    language: str = ""
    imports: tuple[str, ...] = ()
    imported_by: tuple[str, ...] = ()
    mtime: float = 0.0
    access_count: int = 0
    importance: float = Field(default=0.0, ge=0.0, le=1.0)
    digest: str = ""

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def stem(self) -> str:
        return PurePosixPath(self.path).stem


class VirtualFile(BaseModel):
    """An in-memory file for indexing a virtual listing."""

    content: str
    mtime: float | None = None


class PatternMatch(BaseModel):
    """An architectural template matched against the directory layout."""

    model_config = ConfigDict(frozen=True)

    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: tuple[str, ...] = ()


class CodebaseIndex:
    """Immutable result of one indexing pass.

    Holds the artifact set, the dependency graph (frozen networkx DiGraph,
    edge ``a -> b`` meaning ``a`` references ``b``), the artifact contents,
    and diagnostics. Rebuild by scanning again; nothing here is refreshed
    in place.
    """

    def __init__(
        self,
        root: Path | None,
        artifacts: Mapping[str, Artifact],
        graph: nx.DiGraph,
        contents: Mapping[str, str],
        warnings: list[str] | None = None,
        complete: bool = True,
        built_at: float | None = None,
    ) -> None:
        self.root = root
        self._artifacts = MappingProxyType(dict(artifacts))
        self._contents = MappingProxyType(dict(contents))
        self.graph = nx.freeze(graph)
        self.warnings = tuple(warnings or ())
        self.complete = complete
        self.built_at = built_at if built_at is not None else time.time()

    def __len__(self) -> int:
        return len(self._artifacts)

    def __contains__(self, path: object) -> bool:
        return path in self._artifacts

    def __iter__(self):
        return iter(self._artifacts.values())

    @property
    def artifacts(self) -> Mapping[str, Artifact]:
        return self._artifacts

    def get(self, path: str) -> Artifact | None:
        return self._artifacts.get(path)

    def paths(self) -> list[str]:
        return sorted(self._artifacts)

    def content(self, path: str) -> str:
        return self._contents.get(path, "")

    def neighbors(self, path: str) -> set[str]:
        """Artifacts directly importing or imported by `path`."""
        if not self.graph.has_node(path):
            return set()
        return set(self.graph.successors(path)) | set(self.graph.predecessors(path))

    def detect_cycles(self) -> list[frozenset[tuple[str, str]]]:
        """Return the edge set of every dependency cycle.

        One set per strongly connected component with more than one node,
        plus self-referencing artifacts. Diagnostics only.
        """
        cycles: list[frozenset[tuple[str, str]]] = []
        for scc in nx.strongly_connected_components(self.graph):
            if len(scc) > 1:
                edges = frozenset(
                    (u, v) for u, v in self.graph.edges(scc) if v in scc
                )
                cycles.append(edges)
        for node in nx.nodes_with_selfloops(self.graph):
            cycles.append(frozenset({(node, node)}))
        cycles.sort(key=lambda c: sorted(c))
        return cycles

    def detect_architectural_patterns(self) -> list[PatternMatch]:
        from ctxpack.index.patterns import match_patterns

        return match_patterns(self.paths())

    def stats(self) -> dict:
        """Get index statistics."""
        by_type = Counter(a.type.value for a in self._artifacts.values())
        return {
            "artifacts": len(self._artifacts),
            "edges": self.graph.number_of_edges(),
            "types": dict(sorted(by_type.items())),
            "total_tokens": sum(a.size for a in self._artifacts.values()),
            "cycles": len(self.detect_cycles()),
            "warnings": len(self.warnings),
            "complete": self.complete,
        }

"""Task classification and term extraction.

Classifiers are strategies: anything implementing ``TaskClassifier`` can be
handed to the scorer, so new categories never touch scorer internals.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from ctxpack.context.models import TaskDescriptor, TaskType

# Checked in order; the first category with a hit wins.
DEFAULT_TAXONOMY: dict[TaskType, tuple[str, ...]] = {
    TaskType.DEBUGGING: ("bug", "fix", "error"),
    TaskType.FEATURE: ("feature", "add", "implement"),
    TaskType.REFACTOR: ("refactor", "optimize", "improve"),
    TaskType.TESTING: ("test", "spec"),
    TaskType.DOCUMENTATION: ("document", "readme"),
}

STOP_WORDS = frozenset({
    "the", "and", "for", "that", "this", "with", "from", "have", "been",
    "will", "can", "should", "would", "could", "into", "when", "where",
    "how", "what", "why", "which", "there", "their", "about", "also",
    "just", "more", "some", "than", "them", "then", "these", "very",
    "after", "before", "between", "each", "other", "such", "only",
    "make", "like", "over", "back", "still", "through", "are", "was",
    "add", "fix", "bug", "error", "issue", "feature", "implement",
    "create", "update", "delete", "remove", "change", "modify", "refactor",
    "optimize", "improve", "document", "please", "need", "want", "not",
    "its", "our", "all", "any", "use", "using", "new",
    "in", "of", "to", "on", "at", "is", "it", "an", "as", "be", "by",
    "or", "we", "do", "if", "so", "up", "my", "me",
})


def split_identifier(word: str) -> list[str]:
    """Split camelCase / snake_case / kebab-case words into lowercase parts."""
    word = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", word)
    word = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", word)
    return [p.lower() for p in re.split(r"[\s_\-./\\]+", word) if p]


def tokenize(text: str) -> list[str]:
    """Lowercase terms of length >= 2, identifiers split into parts."""
    terms: list[str] = []
    for raw in re.findall(r"[A-Za-z][A-Za-z0-9_]*", text):
        for part in split_identifier(raw):
            if len(part) >= 2:
                terms.append(part)
    return terms


def extract_terms(text: str) -> tuple[str, ...]:
    """Significant search terms of a task, stop words removed, order kept."""
    return tuple(dict.fromkeys(t for t in tokenize(text) if t not in STOP_WORDS))


class TaskClassifier(ABC):
    """Maps free task text to a TaskType."""

    @abstractmethod
    def classify(self, text: str) -> TaskType:
        ...

    def describe(self, text: str, focus_files: list[str] | tuple[str, ...] | None = None) -> TaskDescriptor:
        """Build a full TaskDescriptor for `text`."""
        return TaskDescriptor(
            text=text,
            task_type=self.classify(text),
            terms=extract_terms(text),
            focus_files=tuple(focus_files or ()),
        )


_SUFFIXES = r"(?:s|es|ed|d|ing|ings|er|ers|ation|ations|ment|ments)?"


def _keyword_pattern(keyword: str) -> str:
    k = re.escape(keyword)
    if keyword.endswith("e"):
        # optimize -> optimization, improve -> improving
        return rf"(?:{k}{_SUFFIXES}|{re.escape(keyword[:-1])}(?:ation|ing|ed|er))"
    return k + _SUFFIXES


class KeywordTaskClassifier(TaskClassifier):
    """Keyword taxonomy classifier.

    Keywords match whole words with common inflections, so "fixing",
    "errors" and "tests" count but "specific" does not. Categories are
    tried in taxonomy order.
    """

    def __init__(self, taxonomy: dict[TaskType, tuple[str, ...]] | None = None) -> None:
        self.taxonomy = taxonomy or DEFAULT_TAXONOMY
        self._patterns = {
            task_type: re.compile(
                r"\b(?:" + "|".join(_keyword_pattern(k) for k in keywords) + r")\b",
                re.IGNORECASE,
            )
            for task_type, keywords in self.taxonomy.items()
        }

    def classify(self, text: str) -> TaskType:
        for task_type, pattern in self._patterns.items():
            if pattern.search(text):
                return task_type
        return TaskType.GENERAL

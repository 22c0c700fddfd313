"""Architectural pattern detection from directory and file-name signatures.

Each template lists signatures (directory names or file names). The
confidence of a template is the fraction of its signatures present in the
repository; templates are scored independently, so several can match at
once.
"""

from __future__ import annotations

from pathlib import PurePosixPath

from ctxpack.index.models import PatternMatch

MIN_CONFIDENCE = 0.5

# name -> (directory signatures, file-name signatures)
PATTERN_TEMPLATES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "mvc": (("controllers", "models", "views"), ()),
    "component-ui": (("components", "hooks", "context"), ()),
    "service-oriented": (("services", "api"), ("docker-compose.yml",)),
    "layered": (("domain", "application", "infrastructure"), ()),
    "django": ((), ("manage.py", "settings.py", "urls.py")),
    "monorepo": (("packages", "apps"), ()),
    "test-suite": (("tests",), ("test config",)),
}

# Alternative spellings counted as the same signature
_ALIASES: dict[str, tuple[str, ...]] = {
    "controllers": ("controllers", "controller"),
    "models": ("models", "model"),
    "views": ("views", "view", "templates"),
    "components": ("components",),
    "hooks": ("hooks",),
    "context": ("context", "contexts", "providers"),
    "services": ("services", "service"),
    "api": ("api", "apis", "routes"),
    "tests": ("tests", "test", "__tests__"),
    "docker-compose.yml": (
        "docker-compose.yml",
        "docker-compose.yaml",
        "compose.yml",
        "compose.yaml",
    ),
    "test config": (
        "conftest.py",
        "pytest.ini",
        "tox.ini",
        "jest.config.js",
        "vitest.config.ts",
    ),
}


def match_patterns(paths: list[str]) -> list[PatternMatch]:
    """Match every template against the given relative paths."""
    dir_names: set[str] = set()
    file_names: set[str] = set()
    for path in paths:
        p = PurePosixPath(path)
        file_names.add(p.name.lower())
        dir_names.update(part.lower() for part in p.parts[:-1])

    matches: list[PatternMatch] = []
    for name, (dir_sigs, file_sigs) in PATTERN_TEMPLATES.items():
        evidence: list[str] = []
        for sig in dir_sigs:
            if any(alias in dir_names for alias in _ALIASES.get(sig, (sig,))):
                evidence.append(f"{sig}/")
        for sig in file_sigs:
            if any(alias in file_names for alias in _ALIASES.get(sig, (sig,))):
                evidence.append(sig)
        total = len(dir_sigs) + len(file_sigs)
        confidence = len(evidence) / total if total else 0.0
        if confidence >= MIN_CONFIDENCE:
            matches.append(
                PatternMatch(
                    name=name,
                    confidence=round(confidence, 3),
                    evidence=tuple(evidence),
                )
            )

    matches.sort(key=lambda m: (-m.confidence, m.name))
    return matches

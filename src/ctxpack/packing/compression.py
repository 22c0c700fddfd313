"""Artifact compression for the medium tier.

Strips non-semantic content (comments, blank lines, bodies) and keeps what
a reader needs to navigate: signatures and their one-line summaries for
code, headings for documents, top-level keys for configuration.
"""

from __future__ import annotations

import re

from ctxpack.index.models import ArtifactType

_FALLBACK_LINES = 5

_SIGNATURE = re.compile(
    r"""^\s*(?:
        @\w[\w.]*                                          # decorators
      | (?:async\s+)?def\s+\w+                             # python
      | class\s+\w+
      | (?:export\s+)?(?:default\s+)?(?:async\s+)?function\b  # js/ts
      | export\s+(?:const|let|var|class|interface|type|enum)\b
      | (?:const|let)\s+\w+\s*=\s*(?:async\s*)?\([^)]*\)\s*=>
      | (?:interface|type|enum)\s+\w+
      | func\s+                                            # go
      | type\s+\w+\s+(?:struct|interface)\b
      | (?:pub(?:\([\w:]+\))?\s+)?(?:async\s+)?(?:fn|struct|enum|trait|impl|mod)\b(?!\s*[=(])  # rust
      | (?:public|private|protected|static|abstract|final|override)\s[^;=]*\(   # java/c#/kotlin
      | fun\s+\w+
      | (?:module|def)\s+[\w.:]+                           # ruby
    )""",
    re.VERBOSE,
)
_PY_DEF = re.compile(r"^\s*(?:async\s+def|def|class)\b")
_CONTROL = re.compile(r"^\s*(?:if|for|while|switch|else|try|catch|return|do)\b")
_COMMENT = re.compile(r"^\s*(?:#(?!include)|//|/\*|\*|--)")
_C_SIGNATURE = re.compile(r"^[A-Za-z_][\w\s\*&:<>,]*\([^;]*\)\s*(?:const\s*)?\{?\s*$")
_DOCSTRING_OPEN = re.compile(r'^\s*[rRbBuU]?("""|\'\'\')')
_MD_HEADING = re.compile(r"^\s*(?:#{1,6}\s+\S|[=\-~^]{3,}\s*$)")
_CONFIG_KEY = re.compile(r"^(?:\[[^\]]+\]|[\"']?[\w.\-]+[\"']?\s*[:=])")
_JSON_TOP_KEY = re.compile(r'^\s{0,4}"[^"]+"\s*:')

_CODE_LANGUAGES = {
    "python", "javascript", "typescript", "go", "rust", "java", "kotlin",
    "c", "cpp", "ruby", "php", "csharp",
}


def compress(content: str, language: str = "", kind: ArtifactType | str = "") -> str:
    """Return a signature/summary-only rendition of `content`."""
    kind = ArtifactType(kind) if kind else None
    lines = content.splitlines()

    if language in ("markdown", "rst", "text") or kind == ArtifactType.DOC:
        kept = _compress_doc(lines)
    elif language in ("json", "yaml", "toml", "ini") or kind == ArtifactType.CONFIG:
        kept = _compress_config(lines, language)
    elif language in _CODE_LANGUAGES:
        kept = _compress_code(lines, language)
    else:
        kept = []

    if not kept:
        kept = [line.rstrip() for line in lines if line.strip()][:_FALLBACK_LINES]
    return "\n".join(kept)


def _compress_code(lines: list[str], language: str) -> list[str]:
    kept: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()
        if not stripped or _COMMENT.match(line) and not stripped.startswith("#!"):
            i += 1
            continue
        is_sig = bool(_SIGNATURE.match(line)) and not _CONTROL.match(line)
        if not is_sig and language in ("c", "cpp"):
            is_sig = bool(_C_SIGNATURE.match(line)) and not _CONTROL.match(line)
        if is_sig:
            kept.append(line.rstrip())
            if language == "python" and _PY_DEF.match(line):
                summary = _python_summary(lines, i + 1)
                if summary:
                    kept.append(summary)
        i += 1
    return kept


def _python_summary(lines: list[str], start: int) -> str:
    """First line of a docstring directly following a signature."""
    j = start
    # Skip continuation lines of a multi-line signature
    while j < len(lines) and not lines[j - 1].rstrip().endswith(":") and j - start < 10:
        j += 1
    if j >= len(lines):
        return ""
    m = _DOCSTRING_OPEN.match(lines[j])
    if not m:
        return ""
    quote = m.group(1)
    text = lines[j].strip()[len(m.group(0).strip()):]
    first = text.split(quote)[0].strip()
    if not first and j + 1 < len(lines):
        first = lines[j + 1].strip().split(quote)[0].strip()
    if not first:
        return ""
    indent = lines[j][: len(lines[j]) - len(lines[j].lstrip())]
    return f'{indent}"""{first}"""'


def _compress_doc(lines: list[str]) -> list[str]:
    kept: list[str] = []
    first_paragraph_done = False
    for idx, line in enumerate(lines):
        if _MD_HEADING.match(line):
            if re.match(r"^\s*[=\-~^]{3,}\s*$", line) and idx > 0:
                # Setext/rst underline: keep the title above it
                title = lines[idx - 1].strip()
                if title and (not kept or kept[-1] != title):
                    kept.append(title)
                continue
            kept.append(line.rstrip())
        elif not first_paragraph_done and line.strip():
            sentence = re.split(r"(?<=[.!?])\s", line.strip(), maxsplit=1)[0]
            kept.append(sentence)
            first_paragraph_done = True
    return kept


def _compress_config(lines: list[str], language: str) -> list[str]:
    pattern = _JSON_TOP_KEY if language == "json" else _CONFIG_KEY
    return [
        line.rstrip()
        for line in lines
        if line.strip() and not _COMMENT.match(line) and pattern.match(line)
    ]

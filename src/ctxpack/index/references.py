"""Artifact classification and reference extraction.

Artifacts are treated as opaque text. References are found with
per-language import/require/include/use patterns and resolved against the
set of indexed paths through a suffix index over module keys, so that
``import pkg.mod`` finds ``src/pkg/mod.py`` and ``require('./util')``
finds ``util/index.js``.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import PurePosixPath

from ctxpack.index.models import ArtifactType

# Language detection by file extension
EXTENSION_LANGUAGE_MAP: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".css": "css",
    ".scss": "css",
    ".md": "markdown",
    ".rst": "rst",
    ".txt": "text",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".ini": "ini",
    ".cfg": "ini",
    ".sh": "shell",
    ".sql": "sql",
    ".html": "html",
}

_DOC_EXTENSIONS = {".md", ".rst", ".txt", ".adoc"}
_DOC_NAMES = ("readme", "changelog", "license", "contributing", "authors")
_CONFIG_EXTENSIONS = {".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".env"}
_CONFIG_NAMES = {
    "dockerfile",
    "makefile",
    "setup.py",
    "settings.py",
    "docker-compose.yml",
    "docker-compose.yaml",
    "compose.yml",
    "compose.yaml",
    "procfile",
}
_TEST_DIRS = {"tests", "test", "__tests__", "spec", "specs", "testing"}
_TEST_NAME = re.compile(
    r"^(test_.+|.+_test|.+\.(test|spec)|.+Tests?|conftest)\.[A-Za-z0-9]+$"
)
_ENTRY_STEMS = {
    "main",
    "__main__",
    "index",
    "app",
    "server",
    "cli",
    "manage",
    "wsgi",
    "asgi",
    "entry",
}

# Extensions tried when resolving an extension-less specifier
_RESOLVE_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "python": (".py", ".pyi"),
    "javascript": (".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx"),
    "typescript": (".ts", ".tsx", ".d.ts", ".js", ".jsx"),
    "rust": (".rs",),
    "java": (".java",),
    "kotlin": (".kt", ".java"),
    "ruby": (".rb",),
    "css": (".css", ".scss"),
}
# Package index files, by language
_INDEX_NAMES: dict[str, tuple[str, ...]] = {
    "python": ("__init__",),
    "javascript": ("index",),
    "typescript": ("index",),
    "rust": ("mod",),
}


def detect_language(file_path: str) -> str:
    """Detect language from file extension; "" when unknown."""
    return EXTENSION_LANGUAGE_MAP.get(PurePosixPath(file_path).suffix.lower(), "")


def infer_type(path: str, content: str = "") -> ArtifactType:
    """Infer the artifact type from path/name heuristics.

    Checked in order: test, doc, config, entry-point, source.
    """
    p = PurePosixPath(path)
    name = p.name
    lower = name.lower()
    dirs = {part.lower() for part in p.parts[:-1]}

    if dirs & _TEST_DIRS or _TEST_NAME.match(name):
        return ArtifactType.TEST
    if p.suffix.lower() in _DOC_EXTENSIONS or lower.startswith(_DOC_NAMES) or "docs" in dirs:
        return ArtifactType.DOC
    if (
        p.suffix.lower() in _CONFIG_EXTENSIONS
        or lower in _CONFIG_NAMES
        or (lower.startswith(".") and "." not in lower[1:])
    ):
        return ArtifactType.CONFIG
    if (
        p.stem.lower() in _ENTRY_STEMS
        or content.startswith("#!")
        or re.search(r"""if\s+__name__\s*==\s*['"]__main__['"]""", content)
    ):
        return ArtifactType.ENTRY_POINT
    return ArtifactType.SOURCE


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

_PY_IMPORT = re.compile(r"^[ \t]*import[ \t]+([\w.]+(?:[ \t]*,[ \t]*[\w.]+)*)", re.MULTILINE)
# Parenthesized name lists may span lines; bare ones end at the line
_PY_FROM = re.compile(
    r"^[ \t]*from[ \t]+(\.*[\w.]*)[ \t]+import[ \t]*(?:\(([^)]*)\)|([\w \t,*]+))",
    re.MULTILINE,
)
_PY_COMMENT = re.compile(r"#[^\n]*")
_JS_PATTERNS = (
    re.compile(r"""\bimport\s[^'"]*?\bfrom\s*['"]([^'"]+)['"]"""),
    re.compile(r"""\bimport\s*\(?\s*['"]([^'"]+)['"]"""),
    re.compile(r"""\brequire\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bexport\s[^'"]*?\bfrom\s*['"]([^'"]+)['"]"""),
)
_GO_IMPORT = re.compile(r"""^\s*(?:import\s+)?(?:\w+\s+)?"([\w./-]+)"\s*$""", re.MULTILINE)
_RUST_USE = re.compile(r"^\s*(?:pub\s+)?use\s+((?:crate|self|super)(?:::\w+)+)", re.MULTILINE)
_RUST_MOD = re.compile(r"^\s*(?:pub\s+)?mod\s+(\w+)\s*;", re.MULTILINE)
_JAVA_IMPORT = re.compile(r"^\s*import\s+(?:static\s+)?([\w.]+)\s*;?", re.MULTILINE)
_C_INCLUDE = re.compile(r"""^\s*#\s*include\s*"([^"]+)\"""", re.MULTILINE)
_RUBY_REQUIRE = re.compile(r"""^\s*require(_relative)?\s*\(?\s*['"]([^'"]+)['"]""", re.MULTILINE)
_PHP_INCLUDE = re.compile(r"""\b(?:require|include)(?:_once)?\s*\(?\s*['"]([^'"]+)['"]""")
_CSS_IMPORT = re.compile(r"""@import\s+(?:url\()?['"]([^'"]+)['"]""")
_MD_LINK = re.compile(r"\]\(([^)\s#]+)(?:#[^)]*)?\)")


def extract_references(path: str, content: str, language: str) -> list[str]:
    """Extract raw reference specifiers from an artifact's text.

    Relative specifiers are normalized to start with "./" (or "../") so the
    resolver can tell them from package-style names. Python relative
    imports are converted the same way.
    """
    refs: list[str] = []

    if language == "python":
        for m in _PY_IMPORT.finditer(content):
            refs.extend(part.strip() for part in m.group(1).split(","))
        for m in _PY_FROM.finditer(content):
            module = m.group(1)
            listed = _PY_COMMENT.sub("", m.group(2) if m.group(2) is not None else m.group(3))
            names = [n.strip() for n in listed.replace("\n", " ").split(",")]
            names = [n.split()[0] for n in names if n and n != "*"]
            dots = len(module) - len(module.lstrip("."))
            rest = module[dots:]
            if dots:
                prefix = "./" if dots == 1 else "../" * (dots - 1)
                base = prefix + rest.replace(".", "/") if rest else prefix.rstrip("/")
                for n in names:
                    refs.append(f"{base}/{n}")
                refs.append(base)
            else:
                for n in names:
                    refs.append(f"{rest}.{n}")
                refs.append(rest)
    elif language in ("javascript", "typescript"):
        for pattern in _JS_PATTERNS:
            refs.extend(m.group(1) for m in pattern.finditer(content))
    elif language == "go":
        refs.extend(m.group(1) for m in _GO_IMPORT.finditer(content))
    elif language == "rust":
        for m in _RUST_USE.finditer(content):
            parts = m.group(1).split("::")
            head, tail = parts[0], parts[1:]
            prefix = "../" if head == "super" else ""
            refs.append(prefix + "/".join(tail))
            if len(tail) > 1:
                refs.append(prefix + "/".join(tail[:-1]))
        refs.extend(f"./{m.group(1)}" for m in _RUST_MOD.finditer(content))
    elif language in ("java", "kotlin", "csharp"):
        refs.extend(m.group(1) for m in _JAVA_IMPORT.finditer(content))
    elif language in ("c", "cpp"):
        refs.extend(_as_relative(m.group(1)) for m in _C_INCLUDE.finditer(content))
    elif language == "ruby":
        for m in _RUBY_REQUIRE.finditer(content):
            refs.append(_as_relative(m.group(2)) if m.group(1) else m.group(2))
    elif language == "php":
        refs.extend(_as_relative(m.group(1)) for m in _PHP_INCLUDE.finditer(content))
    elif language == "css":
        refs.extend(_as_relative(m.group(1)) for m in _CSS_IMPORT.finditer(content))
    elif language in ("markdown", "rst"):
        for m in _MD_LINK.finditer(content):
            target = m.group(1)
            if "://" not in target and not target.startswith("mailto:"):
                refs.append(_as_relative(target))

    return list(dict.fromkeys(r for r in refs if r and r not in (".", "./")))


def _as_relative(spec: str) -> str:
    if spec.startswith(("./", "../", "/")):
        return spec
    return "./" + spec


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def module_key(path: str) -> str:
    """Path without extension and without a trailing package index name."""
    p = PurePosixPath(path)
    stem = p.name.split(".")[0] if p.name.endswith(".d.ts") else p.stem
    key = str(p.parent / stem) if str(p.parent) != "." else stem
    for index_name in _INDEX_NAMES.get(detect_language(path), ()):
        suffix = "/" + index_name
        if key.endswith(suffix):
            return key[: -len(suffix)]
    return key


class ReferenceResolver:
    """Resolves raw reference specifiers to indexed artifact paths."""

    def __init__(self, paths: list[str]) -> None:
        self._paths = set(paths)
        self._by_suffix: dict[str, list[str]] = {}
        self._dirs: dict[str, list[str]] = {}
        for path in sorted(paths):
            parts = module_key(path).split("/")
            for i in range(len(parts)):
                self._by_suffix.setdefault("/".join(parts[i:]), []).append(path)
            parent = str(PurePosixPath(path).parent)
            self._dirs.setdefault(parent, []).append(path)

    def resolve(self, importer: str, spec: str, language: str) -> list[str]:
        """Resolve one specifier; returns [] for external references."""
        if spec.startswith(("./", "../")):
            base = posixpath.dirname(importer)
            target = posixpath.normpath(posixpath.join(base, spec))
            hits = self._resolve_exact(target, language)
        elif spec.startswith("/"):
            hits = self._resolve_exact(spec.lstrip("/"), language)
        else:
            key = spec.replace("::", "/")
            if language not in ("go",) and "/" not in key:
                key = key.replace(".", "/")
            hits = self._resolve_suffix(key.strip("/"), importer, language)
        return [h for h in hits if h != importer]

    def _resolve_exact(self, target: str, language: str) -> list[str]:
        if target.startswith(".."):
            return []
        if target in self._paths:
            return [target]
        for ext in _RESOLVE_EXTENSIONS.get(language, ()):
            if target + ext in self._paths:
                return [target + ext]
        for index_name in _INDEX_NAMES.get(language, ()):
            for ext in _RESOLVE_EXTENSIONS.get(language, ()):
                candidate = f"{target}/{index_name}{ext}"
                if candidate in self._paths:
                    return [candidate]
        return []

    def _resolve_suffix(self, key: str, importer: str, language: str) -> list[str]:
        if language == "go":
            # Go imports name a package directory
            for d in sorted(self._dirs, key=len):
                if d == key or d.endswith("/" + key):
                    return [p for p in self._dirs[d] if p.endswith(".go")]
            return []
        candidates = self._by_suffix.get(key, [])
        if not candidates:
            return []
        exts = _RESOLVE_EXTENSIONS.get(language)
        if exts:
            same_family = [c for c in candidates if c.endswith(exts)]
            candidates = same_family or candidates
        importer_top = importer.split("/")[0]
        best = min(
            candidates,
            key=lambda c: (c.split("/")[0] != importer_top, len(c), c),
        )
        return [best]

"""Tests for the codebase indexer."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import networkx as nx
import pytest
from pydantic import ValidationError

from ctxpack.config import IndexerConfig
from ctxpack.exceptions import IndexingError
from ctxpack.index.files import collect_files
from ctxpack.index.indexer import CodebaseIndexer, importance
from ctxpack.index.models import Artifact, ArtifactType, VirtualFile
from ctxpack.index.patterns import match_patterns
from ctxpack.index.references import (
    ReferenceResolver,
    detect_language,
    extract_references,
    infer_type,
    module_key,
)


@pytest.fixture
def index(tmp_project: Path):
    return CodebaseIndexer().scan(tmp_project)


class TestInferType:
    def test_test_files(self):
        assert infer_type("tests/test_utils.py") == ArtifactType.TEST
        assert infer_type("src/widget.spec.ts") == ArtifactType.TEST
        assert infer_type("pkg/handler_test.go") == ArtifactType.TEST

    def test_docs(self):
        assert infer_type("README.md") == ArtifactType.DOC
        assert infer_type("docs/guide.html") == ArtifactType.DOC

    def test_config(self):
        assert infer_type("config.yaml") == ArtifactType.CONFIG
        assert infer_type("Dockerfile") == ArtifactType.CONFIG
        assert infer_type(".gitignore") == ArtifactType.CONFIG

    def test_entry_points(self):
        assert infer_type("main.py") == ArtifactType.ENTRY_POINT
        assert infer_type("src/index.ts") == ArtifactType.ENTRY_POINT
        assert infer_type("tool.py", "#!/usr/bin/env python\nprint(1)\n") == ArtifactType.ENTRY_POINT
        assert infer_type("job.py", 'if __name__ == "__main__":\n    run()\n') == ArtifactType.ENTRY_POINT

    def test_source(self):
        assert infer_type("pkg/service.py", "def run(): pass\n") == ArtifactType.SOURCE

    def test_detect_language(self):
        assert detect_language("a/b.py") == "python"
        assert detect_language("a/b.tsx") == "typescript"
        assert detect_language("Makefile") == ""


class TestReferences:
    def test_python_absolute(self):
        refs = extract_references("main.py", "from utils import helper\nimport os.path\n", "python")
        assert "utils" in refs
        assert "utils.helper" in refs
        assert "os.path" in refs

    def test_python_relative(self):
        refs = extract_references("pkg/mod.py", "from .sibling import thing\n", "python")
        assert "./sibling" in refs
        assert "./sibling/thing" in refs

    def test_python_consecutive_from_imports(self):
        code = "from utils import a, b\nfrom models import User\n\nx = 1\n"
        refs = extract_references("main.py", code, "python")
        assert refs == ["utils.a", "utils.b", "utils", "models.User", "models"]

    def test_python_parenthesized_names(self):
        code = (
            "from utils import (\n"
            "    helper,  # formatting\n"
            "    total as t,\n"
            ")\n"
            "from models import User\n"
        )
        refs = extract_references("main.py", code, "python")
        assert refs == ["utils.helper", "utils.total", "utils", "models.User", "models"]

    def test_python_trailing_comment(self):
        refs = extract_references("main.py", "from utils import helper  # noqa\n", "python")
        assert refs == ["utils.helper", "utils"]

    def test_javascript(self):
        code = "import x from './util';\nconst y = require('../lib/y');\nimport 'react';\n"
        refs = extract_references("src/app.js", code, "javascript")
        assert refs == ["./util", "react", "../lib/y"]

    def test_markdown_links(self):
        refs = extract_references("README.md", "See [a](docs/a.md) and [b](https://x.io).", "markdown")
        assert refs == ["./docs/a.md"]

    def test_module_key(self):
        assert module_key("pkg/mod.py") == "pkg/mod"
        assert module_key("pkg/__init__.py") == "pkg"
        assert module_key("util/index.js") == "util"
        assert module_key("src/net/mod.rs") == "src/net"

    def test_index_names_are_per_language(self):
        assert module_key("util/index.py") == "util/index"
        assert module_key("pkg/__init__.js") == "pkg/__init__"
        resolver = ReferenceResolver(["pkg/__init__.py", "pkg/mod.py", "app.py"])
        assert resolver.resolve("app.py", "pkg.mod", "python") == ["pkg/mod.py"]
        assert resolver.resolve("app.py", "pkg", "python") == ["pkg/__init__.py"]

    def test_resolve_relative_index_file(self):
        resolver = ReferenceResolver(["main.js", "util/index.js"])
        assert resolver.resolve("main.js", "./util", "javascript") == ["util/index.js"]

    def test_resolve_dotted_module_by_suffix(self):
        resolver = ReferenceResolver(["src/pkg/mod.py", "other.py"])
        assert resolver.resolve("other.py", "pkg.mod", "python") == ["src/pkg/mod.py"]

    def test_external_reference_unresolved(self):
        resolver = ReferenceResolver(["main.py"])
        assert resolver.resolve("main.py", "requests", "python") == []


class TestIndexer:
    def test_scan_finds_files(self, index):
        assert set(index.paths()) == {
            "README.md",
            "api/__init__.py",
            "api/routes.py",
            "config.yaml",
            "main.py",
            "models.py",
            "tests/test_utils.py",
            "utils.py",
        }
        assert index.complete is True
        assert index.warnings == ()

    def test_artifact_types(self, index):
        assert index.get("main.py").type == ArtifactType.ENTRY_POINT
        assert index.get("utils.py").type == ArtifactType.SOURCE
        assert index.get("tests/test_utils.py").type == ArtifactType.TEST
        assert index.get("README.md").type == ArtifactType.DOC
        assert index.get("config.yaml").type == ArtifactType.CONFIG

    def test_dependency_edges(self, index):
        assert index.graph.has_edge("main.py", "utils.py")
        assert index.graph.has_edge("main.py", "models.py")
        assert index.graph.has_edge("models.py", "utils.py")
        assert index.graph.has_edge("api/routes.py", "models.py")
        assert index.graph.has_edge("README.md", "utils.py")

    def test_imports_and_imported_by(self, index):
        utils = index.get("utils.py")
        assert "main.py" in utils.imported_by
        assert "models.py" in utils.imported_by
        assert index.get("main.py").imports == ("models.py", "utils.py")

    def test_sizes_in_tokens(self, tmp_project: Path, index):
        text = (tmp_project / "utils.py").read_text()
        assert index.get("utils.py").size == max(1, len(text) // 4)

    def test_importance_bounds(self, index):
        for artifact in index:
            assert 0.0 <= artifact.importance <= 1.0
        # Entry point, recently modified
        assert index.get("main.py").importance >= 0.5

    def test_importance_formula(self):
        artifact = Artifact(
            path="app.py",
            size=20000,
            type=ArtifactType.ENTRY_POINT,
            imported_by=("a", "b", "c", "d", "e"),
            mtime=1000.0,
        )
        # 0.4 entry + 0.3 importers (capped) + 0.1 recent + 0.2 size (capped)
        assert importance(artifact, now=1000.0) == 1.0
        stale = artifact.model_copy(update={"type": ArtifactType.SOURCE, "imported_by": ()})
        assert importance(stale, now=1000.0 + 30 * 86400) == pytest.approx(0.2)

    def test_artifacts_are_immutable(self, index):
        with pytest.raises(ValidationError):
            index.get("main.py").size = 1
        with pytest.raises(nx.NetworkXError):
            index.graph.add_edge("main.py", "README.md")

    def test_access_counts_stamped(self, tmp_project: Path):
        index = CodebaseIndexer().scan(tmp_project, access_counts={"utils.py": 4})
        assert index.get("utils.py").access_count == 4
        assert index.get("main.py").access_count == 0

    def test_excludes_and_gitignore(self, tmp_project: Path):
        cache = tmp_project / "__pycache__"
        cache.mkdir()
        (cache / "utils.cpython-311.pyc").write_bytes(b"\x00\x01")
        (tmp_project / ".gitignore").write_text("secret.txt\n")
        (tmp_project / "secret.txt").write_text("password")

        index = CodebaseIndexer().scan(tmp_project)
        assert "secret.txt" not in index
        assert not any(p.startswith("__pycache__") for p in index.paths())
        assert ".gitignore" in index

    def test_binary_file_skipped_with_warning(self, tmp_project: Path):
        (tmp_project / "blob.dat").write_bytes(b"abc\x00def")
        index = CodebaseIndexer().scan(tmp_project)
        assert "blob.dat" not in index
        assert len(index.warnings) == 1
        assert "binary content" in index.warnings[0]
        assert "main.py" in index

    def test_missing_root_is_fatal(self, tmp_path: Path):
        with pytest.raises(IndexingError):
            CodebaseIndexer().scan(tmp_path / "does-not-exist")

    def test_cancel_yields_incomplete_index(self, tmp_project: Path):
        cancel = threading.Event()
        cancel.set()
        index = CodebaseIndexer(IndexerConfig(workers=1)).scan(tmp_project, cancel=cancel)
        assert index.complete is False
        assert len(index) < 8

    def test_timeout_yields_incomplete_index(self, tmp_project: Path, monkeypatch):
        original = CodebaseIndexer._file_loader

        def slow_loader(self, full_path):
            load = original(self, full_path)

            def slow():
                time.sleep(0.1)
                return load()

            return slow

        monkeypatch.setattr(CodebaseIndexer, "_file_loader", slow_loader)
        index = CodebaseIndexer(IndexerConfig(workers=1, timeout_s=0.2)).scan(tmp_project)
        assert index.complete is False
        assert len(index) < 8

    def test_enumeration_stops_between_directories(self, tmp_project: Path):
        assert collect_files(tmp_project, should_stop=lambda: True) == []

        calls = []

        def after_root() -> bool:
            calls.append(1)
            return len(calls) > 1

        names = sorted(p.name for p in collect_files(tmp_project, should_stop=after_root))
        assert names == ["README.md", "config.yaml", "main.py", "models.py", "utils.py"]

    def test_cancel_after_loading_skips_reference_pass(self, tmp_project: Path):
        cancel = threading.Event()

        def cancel_when_loaded(path, current, total):
            if current == total:
                cancel.set()

        index = CodebaseIndexer(IndexerConfig(workers=1)).scan(
            tmp_project, cancel=cancel, progress_callback=cancel_when_loaded
        )
        assert len(index) == 8
        assert index.complete is False
        assert index.graph.number_of_edges() == 0

    def test_progress_callback(self, tmp_project: Path):
        seen = []
        CodebaseIndexer().scan(tmp_project, progress_callback=lambda p, i, n: seen.append((i, n)))
        assert len(seen) == 8
        assert seen[-1] == (8, 8)

    def test_stats(self, index):
        stats = index.stats()
        assert stats["artifacts"] == 8
        assert stats["types"]["source"] == 4
        assert stats["complete"] is True

    def test_patterns(self, index):
        names = [m.name for m in index.detect_architectural_patterns()]
        assert "test-suite" in names
        # api/ alone is one of three service-oriented signatures
        assert "service-oriented" not in names
        for match in index.detect_architectural_patterns():
            assert 0.5 <= match.confidence <= 1.0


class TestPatterns:
    def test_tests_dir_alone_is_half(self):
        matches = {m.name: m for m in match_patterns(["tests/test_a.py", "a.py"])}
        assert matches["test-suite"].confidence == 0.5
        assert matches["test-suite"].evidence == ("tests/",)

    def test_test_config_aliases_count_once(self):
        paths = ["tests/test_a.py", "tests/conftest.py", "pytest.ini", "tox.ini"]
        matches = {m.name: m for m in match_patterns(paths)}
        assert matches["test-suite"].confidence == 1.0
        assert matches["test-suite"].evidence == ("tests/", "test config")

    def test_service_oriented(self):
        paths = ["services/billing.py", "api/routes.py", "docker-compose.yaml"]
        matches = {m.name: m for m in match_patterns(paths)}
        assert matches["service-oriented"].confidence == 1.0
        assert [m.name for m in match_patterns(["api/routes.py"])] == []

    def test_several_templates_coexist(self):
        paths = [
            "controllers/user.py",
            "models/user.py",
            "views/user.html",
            "tests/test_user.py",
            "manage.py",
            "settings.py",
        ]
        names = [m.name for m in match_patterns(paths)]
        assert names == ["mvc", "django", "test-suite"]


class TestVirtualListing:
    def test_scan_listing(self, scenario_listing):
        index = CodebaseIndexer().scan(scenario_listing)
        assert index.root is None
        assert index.get("core/entry.py").size == 500
        assert index.get("util/helper.py").size == 300
        assert index.get("notes.md").size == 1000
        assert index.get("core/entry.py").type == ArtifactType.ENTRY_POINT
        assert index.graph.has_edge("core/entry.py", "util/helper.py")

    def test_virtual_file_mtime(self):
        index = CodebaseIndexer().scan({"a.py": VirtualFile(content="x = 1\n", mtime=123.0)})
        assert index.get("a.py").mtime == 123.0

    def test_detect_cycles(self):
        listing = {
            "a.py": "import b\n",
            "b.py": "import a\n",
            "c.py": "import a\n",
        }
        index = CodebaseIndexer().scan(listing)
        cycles = index.detect_cycles()
        assert cycles == [frozenset({("a.py", "b.py"), ("b.py", "a.py")})]

    def test_no_cycles(self, scenario_listing):
        assert CodebaseIndexer().scan(scenario_listing).detect_cycles() == []

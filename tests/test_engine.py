"""End-to-end tests for ContextEngine."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from ctxpack import ContextEngine
from ctxpack.context.models import Tier
from ctxpack.exceptions import IndexingError, SnapshotNotFound
from ctxpack.learning.learner import Outcome

TASK = "fix the calculate total bug in utils"


@pytest.fixture
def engine(tmp_project: Path):
    e = ContextEngine(tmp_project)
    yield e
    e.close()


class TestContextEngine:
    def test_request(self, engine):
        profile = engine.request(TASK)
        assert profile.budget == 8000
        assert profile.total_size <= 8000
        assert profile.entries[0].path == "utils.py"
        assert profile.tier_of("utils.py") == Tier.HIGH
        assert engine.switcher.active("default") is profile

    def test_budget_override(self, engine):
        profile = engine.request(TASK, budget=100)
        assert profile.budget == 100
        assert profile.total_size <= 100

    def test_render_dependency_order(self, engine):
        rendered = engine.render(engine.request(TASK))
        assert rendered.startswith(f"# Codebase Context for: {TASK}")
        assert rendered.index("## utils.py") < rendered.index("## models.py")
        assert rendered.index("## models.py") < rendered.index("## main.py")

    def test_switch_and_resume(self, engine):
        first = engine.request(TASK)
        engine.request("add an order summary feature")
        assert engine.switcher.depth("default") == 1

        snapshot_id = engine.switcher.stack("default")[0].id
        restored = engine.request("ignored", resume=snapshot_id)
        assert restored == first
        assert engine.switcher.depth("default") == 0

    def test_resume_missing(self, engine):
        active = engine.request(TASK)
        with pytest.raises(SnapshotNotFound):
            engine.request(TASK, resume="missing-id")
        assert engine.switcher.active("default") is active

    def test_feedback_loop(self, engine):
        engine.request(TASK)
        engine.record_access("default", "utils.py", 2)
        engine.record_access("default", "models.py")
        log = engine.complete(rating=1.0)
        assert log.outcome == Outcome.COMPLETED

        engine.learner.flush(timeout=10)
        model = engine.learner.current()
        assert model.version == 1
        assert model.access_counts == {"models.py": 1, "utils.py": 2}

        index = engine.reindex()
        assert index.get("utils.py").access_count == 2
        assert index.get("main.py").access_count == 0

    def test_cancelled_reindex(self, engine):
        cancel = threading.Event()
        cancel.set()
        index = engine.reindex(cancel=cancel)
        assert index.complete is False
        profile = engine.request(TASK)
        assert profile.index_complete is False
        assert "INCOMPLETE" in profile.summary()

    def test_missing_root(self, tmp_path: Path):
        with ContextEngine(tmp_path / "nope") as engine:
            with pytest.raises(IndexingError):
                engine.request(TASK)

    def test_virtual_listing(self, scenario_listing):
        with ContextEngine(scenario_listing) as engine:
            profile = engine.request("fix bug in core.entry", budget=700)
            assert profile.tier_of("core/entry.py") == Tier.HIGH
            assert profile.tier_of("util/helper.py") in (Tier.HIGH, Tier.MEDIUM)
            assert profile.tier_of("notes.md") in (Tier.LOW, Tier.EXCLUDED)
            assert profile.total_size <= 700


class TestPersistentEngine:
    def test_state_survives_reopen(self, tmp_project: Path):
        engine = ContextEngine.open(tmp_project)
        engine.request(TASK)
        engine.request("add an order summary feature")
        engine.record_access("default", "models.py")
        engine.complete()
        engine.learner.flush(timeout=10)
        engine.close()

        assert (tmp_project / ".ctxpack" / "state.db").exists()

        with ContextEngine.open(tmp_project) as reopened:
            assert reopened.switcher.depth("default") == 1
            assert reopened.learner.current().version == 1
            assert ".ctxpack/state.db" not in reopened.index
            restored = reopened.request(TASK, resume=reopened.switcher.stack("default")[0].id)
            assert restored.task.text == TASK

    def test_index_build_recorded(self, tmp_project: Path):
        with ContextEngine.open(tmp_project) as engine:
            assert engine.last_index() is None
            engine.request(TASK)
            recorded = engine.last_index()
            assert recorded["stats"]["artifacts"] == 8
            assert recorded["built_at"] == engine.index.built_at

        with ContextEngine.open(tmp_project) as reopened:
            assert reopened.last_index() == recorded

    def test_corrupt_state_db_is_not_fatal(self, tmp_project: Path):
        (tmp_project / ".ctxpack").mkdir()
        (tmp_project / ".ctxpack" / "state.db").write_bytes(b"not a database" * 512)

        with ContextEngine.open(tmp_project) as engine:
            assert engine.learner.current().version == 0
            engine.request(TASK)
            engine.request("add an order summary feature")
            assert engine.switcher.depth("default") == 1
            assert engine.last_index() is None

            engine.record_access("default", "models.py")
            engine.complete()
            engine.learner.flush(timeout=10)
            assert engine.learner.current().version == 1

    def test_config_is_loaded(self, tmp_project: Path):
        (tmp_project / ".ctxpack").mkdir()
        (tmp_project / ".ctxpack" / "config.json").write_text('{"packing": {"budget": 1234}}')
        with ContextEngine.open(tmp_project) as engine:
            assert engine.request(TASK).budget == 1234

"""Tests for task classification and relevance scoring."""

from __future__ import annotations

import pytest

from ctxpack.context.models import TaskType
from ctxpack.index.indexer import CodebaseIndexer
from ctxpack.learning.model import LearningModel
from ctxpack.scoring.classifier import (
    KeywordTaskClassifier,
    TaskClassifier,
    extract_terms,
    split_identifier,
)
from ctxpack.scoring.scorer import RelevanceScorer, ScoredArtifact

TASK = "fix bug in core.entry"


@pytest.fixture
def scenario_index(scenario_listing):
    return CodebaseIndexer().scan(scenario_listing)


class TestClassifier:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("fix the login bug", TaskType.DEBUGGING),
            ("fixing intermittent errors in the importer", TaskType.DEBUGGING),
            ("add rate limiting to the API", TaskType.FEATURE),
            ("implement CSV export", TaskType.FEATURE),
            ("refactor the parser", TaskType.REFACTOR),
            ("optimization of the cache layer", TaskType.REFACTOR),
            ("write tests for the parser", TaskType.TESTING),
            ("update the README", TaskType.DOCUMENTATION),
            ("look at a specific case", TaskType.GENERAL),
        ],
    )
    def test_taxonomy(self, text, expected):
        assert KeywordTaskClassifier().classify(text) == expected

    def test_custom_taxonomy(self):
        classifier = KeywordTaskClassifier({TaskType.TESTING: ("verify",)})
        assert classifier.classify("verify the output") == TaskType.TESTING
        assert classifier.classify("fix the bug") == TaskType.GENERAL

    def test_split_identifier(self):
        assert split_identifier("loginHandler") == ["login", "handler"]
        assert split_identifier("HTTPServer_main") == ["http", "server", "main"]

    def test_extract_terms(self):
        assert extract_terms("Fix the loginHandler timeout bug") == ("login", "handler", "timeout")

    def test_describe(self):
        task = KeywordTaskClassifier().describe("fix the login bug", ["auth.py"])
        assert task.task_type == TaskType.DEBUGGING
        assert task.terms == ("login",)
        assert task.focus_files == ("auth.py",)


class TestRelevanceScorer:
    def test_scores_in_unit_interval(self, tmp_project):
        index = CodebaseIndexer().scan(tmp_project)
        results = RelevanceScorer().score_all(index, "fix the calculate total bug in utils")
        assert {r.path for r in results} == set(index.paths())
        for r in results:
            assert 0.0 <= r.score <= 1.0
            for value in r.features.values():
                assert 0.0 <= value <= 1.0

    def test_ranking_sorted(self, tmp_project):
        index = CodebaseIndexer().scan(tmp_project)
        results = RelevanceScorer().score_all(index, "fix the calculate total bug in utils")
        assert results == sorted(results, key=ScoredArtifact.sort_key)
        assert results[0].path == "utils.py"

    def test_scenario_features(self, scenario_index):
        scorer = RelevanceScorer()
        task = scorer.describe(TASK)
        assert task.task_type == TaskType.DEBUGGING
        assert task.terms == ("core", "entry")

        by_path = {r.path: r for r in scorer.score_all(scenario_index, task)}
        entry = by_path["core/entry.py"]
        helper = by_path["util/helper.py"]
        notes = by_path["notes.md"]

        assert entry.features["name_match"] == 1.0
        assert entry.features["keyword_match"] == 0.5
        assert helper.features["dependency_proximity"] == pytest.approx(0.8)
        assert notes.features["dependency_proximity"] == 0.0
        assert entry.score == pytest.approx(0.6)
        assert helper.score == pytest.approx(0.36)
        assert notes.score == pytest.approx(0.1)

    def test_score_single(self, scenario_index):
        scorer = RelevanceScorer()
        assert scorer.score(scenario_index, "core/entry.py", TASK) == pytest.approx(0.6)
        assert scorer.score(scenario_index, scenario_index.get("notes.md"), TASK) == pytest.approx(0.1)
        with pytest.raises(KeyError):
            scorer.score(scenario_index, "missing.py", TASK)

    def test_deterministic(self, tmp_project):
        index = CodebaseIndexer().scan(tmp_project)
        scorer = RelevanceScorer()
        first = scorer.score_all(index, "add order summary feature")
        second = scorer.score_all(index, "add order summary feature")
        assert first == second

    def test_tie_break(self):
        listing = {"bb.py": "x = 1\n", "a.py": "x = 1\n", "c.py": "x = 1\n"}
        index = CodebaseIndexer().scan(listing)
        results = RelevanceScorer().score_all(index, "unrelated words")
        assert len({r.score for r in results}) == 1
        assert [r.path for r in results] == ["a.py", "c.py", "bb.py"]

    def test_focus_files(self, scenario_index):
        scorer = RelevanceScorer()
        task = scorer.describe("tidy things up", focus_files=["util/helper.py"])
        by_path = {r.path: r for r in scorer.score_all(scenario_index, task)}
        assert by_path["util/helper.py"].features["name_match"] == 1.0
        assert by_path["core/entry.py"].features["dependency_proximity"] == pytest.approx(0.8)

    def test_restrict_paths(self, scenario_index):
        results = RelevanceScorer().score_all(scenario_index, TASK, paths=["util/helper.py", "gone.py"])
        assert [r.path for r in results] == ["util/helper.py"]
        # Proximity still comes from the whole graph
        assert results[0].features["dependency_proximity"] == pytest.approx(0.8)

    def test_pluggable_classifier(self, tmp_project):
        class AlwaysTesting(TaskClassifier):
            def classify(self, text: str) -> TaskType:
                return TaskType.TESTING

        index = CodebaseIndexer().scan(tmp_project)
        scorer = RelevanceScorer(classifier=AlwaysTesting())
        task = scorer.describe("anything at all")
        assert task.task_type == TaskType.TESTING
        by_path = {r.path: r for r in scorer.score_all(index, task)}
        assert by_path["tests/test_utils.py"].features["type_match"] == 1.0

    def test_model_weights_used(self, scenario_index):
        weights = {
            "keyword_match": 0.0,
            "name_match": 0.0,
            "dependency_proximity": 0.0,
            "type_match": 0.0,
            "recency": 1.0,
        }
        scorer = RelevanceScorer(model=LearningModel(weights=weights))
        for r in scorer.score_all(scenario_index, TASK):
            assert r.score == pytest.approx(1.0)

    def test_model_callable_read_per_call(self, scenario_index):
        models = [LearningModel()]
        scorer = RelevanceScorer(model=lambda: models[-1])
        before = scorer.score(scenario_index, "notes.md", TASK)
        models.append(
            LearningModel(
                version=1,
                weights={
                    "keyword_match": 0.0,
                    "name_match": 0.0,
                    "dependency_proximity": 0.0,
                    "type_match": 0.0,
                    "recency": 1.0,
                },
            )
        )
        after = scorer.score(scenario_index, "notes.md", TASK)
        assert before == pytest.approx(0.1)
        assert after == pytest.approx(1.0)


class TestAffinity:
    LISTING = {"alpha.py": "def alpha():\n    pass\n", "beta.py": "x = 2\n"}

    def _proximity(self, count: int) -> float:
        index = CodebaseIndexer().scan(self.LISTING)
        model = LearningModel(
            co_access={"alpha.py": {"beta.py": count}, "beta.py": {"alpha.py": count}}
        )
        by_path = {r.path: r for r in RelevanceScorer(model=model).score_all(index, "change alpha")}
        return by_path["beta.py"].features["dependency_proximity"]

    def test_affine_pair_counts_as_neighbor(self):
        assert self._proximity(4) == pytest.approx(0.9)

    def test_at_threshold_ignored(self):
        assert self._proximity(3) == 0.0

    def test_below_threshold_ignored(self):
        assert self._proximity(2) == 0.0

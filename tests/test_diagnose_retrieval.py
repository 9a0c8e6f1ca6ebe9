"""Tests for the retrieval diagnostics script."""

import importlib.util
import json
from pathlib import Path

import pytest

from assistly.chunker import format_chunk
from assistly.embedder import LocalEmbedder
from assistly.models import Chunk
from tests.conftest import FakeSearch


SCRIPT_PATH = Path(__file__).parent.parent / "scripts" / "diagnose_retrieval.py"


@pytest.fixture(scope="module")
def diagnose():
    spec = importlib.util.spec_from_file_location("diagnose_retrieval", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestRunDiagnostics:

    async def test_report_contents(self, diagnose, embedder: LocalEmbedder, search: FakeSearch):
        report = await diagnose.run_diagnostics("How many paid leaves?", embedder, search, top_k=10)

        assert report["embedding_dimension"] == 384
        assert len(report["candidates"]) == 4
        assert report["stats"]["max"] == 0.72
        assert report["stats"]["above_0_5"] == 2
        assert report["selected"] == ["faq_1", "doc_1", "faq_2"]
        assert report["context_length"] > 0
        assert search.calls[0][1] == 10

    async def test_report_is_json_serializable(self, diagnose, embedder: LocalEmbedder, search: FakeSearch):
        report = await diagnose.run_diagnostics("paid leave", embedder, search, top_k=5)

        assert json.loads(json.dumps(report))["question"] == "paid leave"

    def test_print_report(self, diagnose, capsys):
        report = {
            "question": "q",
            "embedding_dimension": 384,
            "embedding_head": [0.1],
            "candidates": [{"id": "a", "source": "faq", "title": "T", "similarity": 0.3, "preview": "p"}],
            "stats": {"count": 1, "max": 0.3, "min": 0.3, "mean": 0.3, "above_0_5": 0, "above_0_7": 0},
            "selected": ["a"],
            "context_length": 12,
            "context_truncated": False,
        }

        diagnose.print_report(report)

        out = capsys.readouterr().out
        assert "FAQ: \"T\"" in out
        assert "Low similarity" in out
        assert "Selected for context: a" in out


class TestKnowledgeFile:

    def test_missing_embeddings_are_computed(self, diagnose, embedder: LocalEmbedder, tmp_path):
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps([
            {"id": "doc_1", "title": "Leave Policy", "content": "Employees get 20 paid leaves."},
            {"id": "faq_1", "question": "Is WFH allowed?", "answer": "Two days a week."},
        ]))

        search = diagnose.load_knowledge_file(path, embedder)
        results = search.search(embedder.embed("Is WFH allowed?\nTwo days a week."), 2)

        assert results[0].id == "faq_1"
        assert results[0].similarity == pytest.approx(1.0)

    def test_long_documents_are_indexed_per_chunk(self, diagnose, embedder: LocalEmbedder, tmp_path):
        content = (
            "Alpha beta gamma delta epsilon. Zeta eta theta iota kappa. "
            "Lambda mu nu xi omicron pi."
        )
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps([{"id": "doc_1", "title": "Handbook", "content": content}]))

        search = diagnose.load_knowledge_file(path, embedder, chunk_size=60, overlap=10)
        query = embedder.embed(format_chunk(Chunk(text="iota kappa Lambda mu nu xi omicron pi.", index=1), "Handbook"))
        results = search.search(query, 10)

        assert sorted(r.id for r in results) == ["doc_1_chunk_0", "doc_1_chunk_1"]
        assert results[0].id == "doc_1_chunk_1"
        assert results[0].similarity == pytest.approx(1.0)
        assert results[0].title == "Handbook"
        assert results[0].content == "iota kappa Lambda mu nu xi omicron pi."

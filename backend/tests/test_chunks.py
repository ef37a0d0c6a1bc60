"""Tests for chunk planning, boundaries and the submitted-ids ledger."""
from transloom.schemas.novel import Paragraph
from transloom.schemas.task import TaskType
from transloom.workflow.chunks import (
    ChunkBoundary,
    LedgerRegistry,
    SubmittedIdsLedger,
    build_chunks,
    format_revision_paragraph,
    format_source_paragraph,
    formatter_for,
)


def _paragraphs(*texts):
    return [Paragraph(id=f"p{i}", text=text) for i, text in enumerate(texts, start=1)]


class TestBuildChunks:
    def test_respects_char_limit(self):
        paragraphs = _paragraphs("a" * 10, "b" * 10, "c" * 10)
        line = len(format_source_paragraph(paragraphs[0]))
        chunks = build_chunks(paragraphs, char_limit=line * 2)
        assert [c.paragraph_ids for c in chunks] == [["p1", "p2"], ["p3"]]
        assert chunks[0].text.startswith("[ID: p1] ")

    def test_oversize_paragraph_forms_own_chunk(self):
        paragraphs = _paragraphs("short", "x" * 500, "tail")
        chunks = build_chunks(paragraphs, char_limit=50)
        assert [c.paragraph_ids for c in chunks] == [["p1"], ["p2"], ["p3"]]

    def test_empty_paragraphs_skipped(self):
        paragraphs = _paragraphs("one", "  ", "three")
        chunks = build_chunks(paragraphs, char_limit=1000)
        assert chunks[0].paragraph_ids == ["p1", "p3"]

    def test_no_paragraphs(self):
        assert build_chunks([], char_limit=100) == []

    def test_revision_formatter_includes_translation(self):
        paragraph = Paragraph(id="p1", text="你好")
        paragraph.append_translation("Hello", "m")
        assert formatter_for(TaskType.POLISH) is format_revision_paragraph
        assert "Translation: Hello" in format_revision_paragraph(paragraph)


class TestBoundaryAndLedger:
    def test_boundary_dedupes_and_describes(self):
        boundary = ChunkBoundary.from_ids(["p1", "p2", "p1", "p3"])
        assert len(boundary) == 3
        assert "p2" in boundary
        assert "p9" not in boundary
        assert boundary.describe() == "p1 .. p3 (3 paragraphs)"

    def test_ledger_remaining_converges(self):
        boundary = ChunkBoundary.from_ids(["p1", "p2", "p3"])
        ledger = SubmittedIdsLedger()
        ledger.record(["p2"])
        assert ledger.remaining(boundary) == ["p1", "p3"]
        ledger.record(["p1", "p3", "p2"])
        assert ledger.remaining(boundary) == []
        assert ledger.submitted_in(boundary) == 3
        ledger.reset()
        assert len(ledger) == 0


class TestLedgerRegistry:
    def test_no_boundary_no_ledger(self):
        assert LedgerRegistry().ledger_for("t1", None) is None

    def test_same_boundary_keeps_ledger(self):
        ledgers = LedgerRegistry()
        boundary = ChunkBoundary.from_ids(["p1", "p2"])
        ledgers.ledger_for("t1", boundary).record(["p1"])

        assert ledgers.ledger_for("t1", ChunkBoundary.from_ids(["p1", "p2"])).remaining(boundary) == ["p2"]

    def test_new_boundary_starts_fresh(self):
        ledgers = LedgerRegistry()
        ledgers.ledger_for("t1", ChunkBoundary.from_ids(["p1"])).record(["p1"])
        assert len(ledgers.ledger_for("t1", ChunkBoundary.from_ids(["p2"]))) == 0
        assert len(ledgers) == 1

    def test_discard(self):
        ledgers = LedgerRegistry()
        ledgers.ledger_for("t1", ChunkBoundary.from_ids(["p1"]))
        ledgers.discard("t1")
        ledgers.discard("missing")
        assert "t1" not in ledgers

"""Tests for the batch submission gateway."""
import pytest

from transloom.schemas.task import TaskDescriptor, TaskType, WorkflowStatus
from transloom.workflow.chunks import ChunkBoundary, SubmittedIdsLedger
from transloom.workflow.gateway import BatchSubmissionGateway, StoreParagraphWriter
from transloom.workflow.state_machine import TaskStateMachine


def _items(**texts):
    return [{"paragraph_id": pid, "translated_text": text} for pid, text in texts.items()]


@pytest.fixture
def chapter(store):
    return store.add_chapter(
        "b1",
        "c1",
        {"p1": "他走了。", "p2": "「走吧」他说。", "p3": "天黑了。"},
        title="第一章",
    )


@pytest.fixture
def task_id(registry, chapter):
    return registry.add_task(
        TaskDescriptor(type=TaskType.TRANSLATION, chapter_id="c1", book_id="b1"),
        workflow_status=WorkflowStatus.WORKING,
    )


@pytest.fixture
def gateway(registry, store):
    return BatchSubmissionGateway(registry, StoreParagraphWriter(store))


@pytest.fixture
def boundary():
    return ChunkBoundary.from_ids(["p1", "p2", "p3"])


class TestSubmit:
    @pytest.mark.asyncio
    async def test_commits_and_reports_remaining(self, gateway, store, task_id, boundary):
        ledger = SubmittedIdsLedger()
        result = await gateway.submit(
            task_id, "c1", "model-x", _items(p1="He left.", p3="It got dark."), boundary=boundary, ledger=ledger
        )
        assert result.success, result.error
        assert result.data["processed_count"] == 2
        assert result.data["remaining_paragraph_ids"] == ["p2"]
        assert store.writes == 1

        paragraph = store.paragraphs("b1", "c1")["p1"]
        assert paragraph.selected_text() == "He left."
        assert paragraph.translations[0].model_id == "model-x"

        result = await gateway.submit(
            task_id, "c1", "model-x", _items(p2="“Let's go,” he said."), boundary=boundary, ledger=ledger
        )
        assert result.success, result.error
        assert result.data["remaining_paragraph_ids"] == []
        assert result.data["remaining_count"] == 0

    @pytest.mark.asyncio
    async def test_duplicate_ids_write_nothing(self, gateway, store, task_id):
        items = [
            {"paragraph_id": "p1", "translated_text": "A"},
            {"paragraph_id": "p1", "translated_text": "B"},
        ]
        result = await gateway.submit(task_id, "c1", "m", items)
        assert not result.success
        assert "duplicate paragraph ids in batch: p1" in result.error
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_requires_working_status(self, gateway, store, registry, task_id):
        registry.update_task(task_id, workflow_status=WorkflowStatus.PLANNING)
        result = await gateway.submit(task_id, "c1", "m", _items(p1="He left."))
        assert not result.success
        assert "current status: planning" in result.error
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_index_addressing_rejected(self, gateway, store, task_id):
        result = await gateway.submit(task_id, "c1", "m", [{"index": 0, "translated_text": "He left."}])
        assert not result.success
        assert "by index" in result.error
        assert store.writes == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("items", [None, [], "p1", {"paragraph_id": "p1"}])
    async def test_malformed_payload_rejected(self, gateway, store, task_id, items):
        result = await gateway.submit(task_id, "c1", "m", items)
        assert not result.success
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, gateway, task_id):
        result = await gateway.submit(task_id, "c1", "m", _items(p1="   "))
        assert not result.success
        assert "missing translated_text" in result.error

    @pytest.mark.asyncio
    async def test_unknown_paragraph_writes_nothing(self, gateway, store, task_id):
        result = await gateway.submit(task_id, "c1", "m", _items(p1="He left.", ghost="Boo."))
        assert not result.success
        assert "ghost" in result.error
        assert "nothing was written" in result.error
        assert store.writes == 0
        assert not store.paragraphs("b1", "c1")["p1"].is_translated

    @pytest.mark.asyncio
    async def test_quote_loss_rejected(self, gateway, store, task_id):
        result = await gateway.submit(task_id, "c1", "m", _items(p2="Let's go, he said."))
        assert not result.success
        assert "paragraph p2" in result.error
        assert "opening" in result.error
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_quote_style_substitution_allowed(self, gateway, task_id):
        result = await gateway.submit(task_id, "c1", "m", _items(p2="\"Let's go,\" he said."))
        assert result.success, result.error

    @pytest.mark.asyncio
    async def test_resubmission_appends_version(self, gateway, store, task_id):
        await gateway.submit(task_id, "c1", "m", _items(p1="He left."))
        await gateway.submit(task_id, "c1", "m", _items(p1="He went away."))
        paragraph = store.paragraphs("b1", "c1")["p1"]
        assert [t.text for t in paragraph.translations] == ["He left.", "He went away."]
        assert paragraph.selected_text() == "He went away."

    @pytest.mark.asyncio
    async def test_unknown_task(self, gateway):
        result = await gateway.submit("nope", "c1", "m", _items(p1="x"))
        assert not result.success
        assert "task not found" in result.error


class TestQuotaAndBoundary:
    @pytest.fixture
    def long_chapter(self, store):
        return store.add_chapter("b1", "c2", {f"q{i}": f"句子{i}" for i in range(1, 11)})

    @pytest.fixture
    def long_task(self, registry, long_chapter):
        return registry.add_task(
            TaskDescriptor(type=TaskType.TRANSLATION, chapter_id="c2", book_id="b1"),
            workflow_status=WorkflowStatus.WORKING,
        )

    @pytest.fixture
    def small_gateway(self, registry, store):
        return BatchSubmissionGateway(registry, StoreParagraphWriter(store), max_batch_size=2)

    @pytest.fixture
    def long_boundary(self):
        return ChunkBoundary.from_ids([f"q{i}" for i in range(1, 11)])

    def _batch(self, *numbers):
        return [{"paragraph_id": f"q{n}", "translated_text": f"Sentence {n}"} for n in numbers]

    @pytest.mark.asyncio
    async def test_soft_overflow_warns(self, small_gateway, long_task, long_boundary):
        result = await small_gateway.submit(
            long_task, "c2", "m", self._batch(1, 2, 3), boundary=long_boundary, ledger=SubmittedIdsLedger()
        )
        assert result.success, result.error
        assert result.warnings

    @pytest.mark.asyncio
    async def test_oversized_batch_rejected(self, small_gateway, store, long_task, long_boundary):
        result = await small_gateway.submit(
            long_task, "c2", "m", self._batch(1, 2, 3, 4, 5, 6), boundary=long_boundary, ledger=SubmittedIdsLedger()
        )
        assert not result.success
        assert "received 6" in result.error
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_tail_of_chunk_allowed(self, small_gateway, long_task, long_boundary):
        ledger = SubmittedIdsLedger()
        ledger.record(["q1", "q2", "q3", "q4", "q5", "q6"])
        result = await small_gateway.submit(
            long_task, "c2", "m", self._batch(7, 8, 9, 10), boundary=long_boundary, ledger=ledger
        )
        assert result.success, result.error
        assert result.data["remaining_paragraph_ids"] == []

    @pytest.mark.asyncio
    async def test_out_of_range_ids_are_bounded(self, gateway, store, long_task):
        boundary = ChunkBoundary.from_ids(["q1", "q2"])
        result = await gateway.submit(
            long_task, "c2", "m", self._batch(1, 3, 4, 5, 6, 7, 8, 9), boundary=boundary, ledger=SubmittedIdsLedger()
        )
        assert not result.success
        assert "q3, q4, q5, q6, q7 (7 total)" in result.error
        assert "q8" not in result.error
        assert "q1 .. q2 (2 paragraphs)" in result.error
        assert store.writes == 0


class TestTitle:
    @pytest.mark.asyncio
    async def test_title_commit(self, gateway, store, task_id):
        result = await gateway.submit_title(task_id, "c1", "m", "  Chapter One ")
        assert result.success
        assert store.title("b1", "c1").translation.text == "Chapter One"

    @pytest.mark.asyncio
    async def test_title_requires_working(self, gateway, registry, task_id):
        registry.update_task(task_id, workflow_status=WorkflowStatus.REVIEW)
        result = await gateway.submit_title(task_id, "c1", "m", "Chapter One")
        assert not result.success


@pytest.mark.asyncio
async def test_review_gate_sees_committed_batches(registry, store, gateway, task_id, boundary):
    machine = TaskStateMachine(registry, store)
    ledger = SubmittedIdsLedger()

    await gateway.submit_title(task_id, "c1", "m", "Chapter One")
    result = await gateway.submit(
        task_id,
        "c1",
        "m",
        _items(p1="He left.", p2="“Let's go,” he said.", p3="It got dark."),
        boundary=boundary,
        ledger=ledger,
    )
    assert result.success, result.error
    for paragraph in store.paragraphs("b1", "c1").values():
        assert len(paragraph.translations) == 1
        assert paragraph.is_translated

    review = await machine.apply(task_id, "review", boundary=boundary)
    assert review.success, review.error

    # a fourth paragraph shows up inside the chunk
    store.add_paragraph("b1", "c1", "p4", "风起了。")
    wider = ChunkBoundary.from_ids(["p1", "p2", "p3", "p4"])
    assert (await machine.apply(task_id, "working", boundary=wider)).success
    review = await machine.apply(task_id, "review", boundary=wider)
    assert not review.success
    assert "1 paragraph(s)" in review.error
    assert "p4" in review.error

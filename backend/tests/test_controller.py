"""Tests for the chapter concurrency controller driving scripted runs."""
import pytest

from conftest import ScriptedProvider, batch, make_gateway, status, tool_call, turn
from transloom.exceptions import ChapterNotFoundError, ParagraphNotFoundError, WorkflowError
from transloom.schemas.task import TaskProgress, TaskRunStatus, TaskType
from transloom.workflow.controller import ChapterConcurrencyController, JobStatus
from transloom.workflow.runner import ChapterTaskRunner


def _title(text="Chapter One"):
    return tool_call("update_chapter_title", translated_title=text)


def _chunk(**texts):
    return turn(status("working"), batch(**texts), status("review"), status("end"))


@pytest.fixture
def chapter(store):
    return store.add_chapter("b1", "c1", {"p1": "一", "p2": "二", "p3": "三"}, title="第一章")


@pytest.fixture
def events():
    return []


def _controller(store, registry, provider, events, chunk_char_limit=1, max_turns=4):
    runner = ChapterTaskRunner(
        make_gateway(provider),
        registry,
        chunk_char_limit=chunk_char_limit,
        max_turns_per_chunk=max_turns,
    )
    controller = ChapterConcurrencyController(store, registry, runner, progress_reset_delay=0)

    async def listen(payload):
        events.append(payload)

    controller.add_listener(listen)
    return controller


def _of_type(events, event_type):
    return [e for e in events if e["type"] == event_type]


@pytest.mark.asyncio
async def test_full_translation_flushes_once(store, registry, chapter, events):
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One."), status("review"), status("end")),
        _chunk(p2="Two."),
        _chunk(p3="Three."),
    ])
    controller = _controller(store, registry, provider, events)

    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    assert outcome.status == JobStatus.COMPLETED, outcome.message
    assert outcome.applied_count == 3
    assert outcome.flushed is True
    assert store.writes == 1
    paragraphs = store.paragraphs("b1", "c1")
    assert [paragraphs[pid].selected_text() for pid in ("p1", "p2", "p3")] == ["One.", "Two.", "Three."]
    assert paragraphs["p1"].translations[0].model_id == "fake:scripted"
    assert store.title("b1", "c1").translation.text == "Chapter One"
    assert registry.get_task(outcome.task_id).status == TaskRunStatus.COMPLETED

    assert events[0]["type"] == "started"
    assert events[-1]["type"] == "finished"
    assert len(_of_type(events, "chunk_started")) == 3
    assert _of_type(events, "chunk_started")[0]["state"]["in_flight_ids"] == ["p1"]
    assert _of_type(events, "title")[0]["text"] == "Chapter One"
    assert _of_type(events, "paragraphs")[-1]["state"]["progress"]["current"] == 3


@pytest.mark.asyncio
async def test_first_prompt_carries_source_and_title(store, registry, chapter, events):
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One."), status("review"), status("end")),
        _chunk(p2="Two."),
        _chunk(p3="Three."),
    ])
    controller = _controller(store, registry, provider, events)
    await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    first_user = provider.generate_calls[0][1]["content"]
    assert "[ID: p1] 一" in first_user
    assert "第一章" in first_user
    second_user = provider.generate_calls[1][1]["content"]
    assert "[ID: p2] 二" in second_user
    assert "[ID: p1]" not in second_user


@pytest.mark.asyncio
async def test_identical_resend_does_not_advance_progress(store, registry, events):
    store.add_chapter("b1", "c1", {"p1": "一", "p2": "二"})
    provider = ScriptedProvider([
        turn(status("working"), batch(p1="One.", p2="Two.")),
        turn(batch(p1="One."), status("review"), status("end")),
    ])
    controller = _controller(store, registry, provider, events, chunk_char_limit=1000)

    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    assert outcome.status == JobStatus.COMPLETED, outcome.message
    assert outcome.applied_count == 2
    updates = _of_type(events, "paragraphs")
    assert len(updates) == 1
    assert updates[0]["state"]["progress"] == {"current": 2, "total": 2, "message": "chunk 1/1"}
    assert len(store.paragraphs("b1", "c1")["p1"].translations) == 1


@pytest.mark.asyncio
async def test_cancel_keeps_finished_chunks(store, registry, chapter, events):
    controller = None

    def cancel_then_answer(messages):
        assert controller.cancel(TaskType.TRANSLATION, "c1") is True
        return _chunk(p3="Three.")

    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One."), status("review"), status("end")),
        _chunk(p2="Two."),
        cancel_then_answer,
    ])
    controller = _controller(store, registry, provider, events)

    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    assert outcome.status == JobStatus.CANCELLED
    assert outcome.applied_count == 2
    assert store.writes == 1
    paragraphs = store.paragraphs("b1", "c1")
    assert paragraphs["p1"].selected_text() == "One."
    assert paragraphs["p2"].selected_text() == "Two."
    assert not paragraphs["p3"].is_translated
    assert registry.get_task(outcome.task_id).status == TaskRunStatus.CANCELLED
    assert controller.get_state(TaskType.TRANSLATION, "c1").is_running is False


@pytest.mark.asyncio
async def test_provider_failure_keeps_streamed_results(store, registry, chapter, events):
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One."), status("review"), status("end")),
        RuntimeError("connection reset by peer"),
    ])
    controller = _controller(store, registry, provider, events)

    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    assert outcome.status == JobStatus.FAILED
    assert "connection reset" in outcome.message
    assert store.writes == 1
    assert store.paragraphs("b1", "c1")["p1"].is_translated
    assert registry.get_task(outcome.task_id).status == TaskRunStatus.ERROR


@pytest.mark.asyncio
async def test_flush_failure_is_reported_distinctly(store, registry, chapter, events):
    store.fail_saves = True
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One.", p2="Two.", p3="Three."), status("review"), status("end")),
    ])
    controller = _controller(store, registry, provider, events, chunk_char_limit=1000)

    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    assert outcome.status == JobStatus.PERSIST_FAILED
    assert outcome.message.startswith("saved to memory but not to disk")
    assert "disk full" in outcome.message
    assert outcome.flushed is False
    assert outcome.applied_count == 3
    assert registry.get_task(outcome.task_id).status == TaskRunStatus.ERROR


@pytest.mark.asyncio
async def test_turn_cap_fails_chunk(store, registry, chapter, events):
    provider = ScriptedProvider([turn(text="Let me think."), turn(text="Still thinking.")])
    controller = _controller(store, registry, provider, events, max_turns=2)

    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")

    assert outcome.status == JobStatus.FAILED
    assert "did not finish within 2 turns (status: planning)" in outcome.message
    assert provider.generate_calls[1][-1]["role"] == "user"
    assert store.writes == 0


@pytest.mark.asyncio
async def test_polish_needs_translated_paragraphs(store, registry, chapter, events):
    controller = _controller(store, registry, ScriptedProvider(), events)

    outcome = await controller.run_full_chapter(TaskType.POLISH, "b1", "c1")

    assert outcome.status == JobStatus.NOTHING_TO_DO
    assert registry.all_tasks() == []
    assert _of_type(events, "finished")


@pytest.mark.asyncio
async def test_polish_appends_new_version(store, registry, chapter, events):
    store.paragraphs("b1", "c1")["p1"].append_translation("One", "earlier")
    provider = ScriptedProvider([turn(status("working"), batch(p1="One."), status("end"))])
    controller = _controller(store, registry, provider, events)

    outcome = await controller.run_full_chapter(TaskType.POLISH, "b1", "c1")

    assert outcome.status == JobStatus.COMPLETED, outcome.message
    assert [t.text for t in store.paragraphs("b1", "c1")["p1"].translations] == ["One", "One."]
    assert "Translation: One" in provider.generate_calls[0][1]["content"]


@pytest.mark.asyncio
async def test_single_paragraph_flushes_immediately(store, registry, chapter, events):
    provider = ScriptedProvider([_chunk(p2="Two.")])
    controller = _controller(store, registry, provider, events)

    outcome = await controller.run_single_paragraph(TaskType.TRANSLATION, "b1", "c1", "p2")

    assert outcome.status == JobStatus.COMPLETED, outcome.message
    assert outcome.flushed is True
    assert store.writes == 1
    paragraphs = store.paragraphs("b1", "c1")
    assert paragraphs["p2"].selected_text() == "Two."
    assert not paragraphs["p1"].is_translated
    user_prompt = provider.generate_calls[0][1]["content"]
    assert "[ID: p2]" in user_prompt
    assert "[ID: p1]" not in user_prompt


@pytest.mark.asyncio
async def test_single_paragraph_unknown_id(store, registry, chapter, events):
    controller = _controller(store, registry, ScriptedProvider(), events)
    with pytest.raises(ParagraphNotFoundError):
        await controller.run_single_paragraph(TaskType.TRANSLATION, "b1", "c1", "p9")


@pytest.mark.asyncio
async def test_running_chapter_and_kind_is_refused(store, registry, chapter, events):
    controller = _controller(store, registry, ScriptedProvider(), events)
    controller.get_state(TaskType.TRANSLATION, "c1").is_running = True

    with pytest.raises(WorkflowError):
        await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")
    assert controller.get_state(TaskType.POLISH, "c1").is_running is False


@pytest.mark.asyncio
async def test_unsupported_kind(store, registry, chapter, events):
    controller = _controller(store, registry, ScriptedProvider(), events)
    with pytest.raises(WorkflowError):
        await controller.run_full_chapter(TaskType.ASSISTANT, "b1", "c1")


@pytest.mark.asyncio
async def test_background_job_and_progress_reset(store, registry, chapter, events):
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One.", p2="Two.", p3="Three."), status("review"), status("end")),
    ])
    controller = _controller(store, registry, provider, events, chunk_char_limit=1000)

    job = controller.start_full_chapter(TaskType.TRANSLATION, "b1", "c1")
    outcome = await job

    assert outcome.status == JobStatus.COMPLETED, outcome.message
    state = controller.get_state(TaskType.TRANSLATION, "c1")
    assert state.is_running is False
    assert state.progress == TaskProgress()
    assert state.last_outcome is outcome


@pytest.mark.asyncio
async def test_broken_listener_does_not_stop_run(store, registry, chapter, events):
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One.", p2="Two.", p3="Three."), status("review"), status("end")),
    ])
    controller = _controller(store, registry, provider, events, chunk_char_limit=1000)

    async def broken(payload):
        raise RuntimeError("socket closed")

    controller.add_listener(broken)
    outcome = await controller.run_full_chapter(TaskType.TRANSLATION, "b1", "c1")
    assert outcome.status == JobStatus.COMPLETED, outcome.message


@pytest.mark.asyncio
async def test_cancel_right_after_background_start(store, registry, chapter, events):
    provider = ScriptedProvider([_chunk(p1="One.", p2="Two.", p3="Three.")])
    controller = _controller(store, registry, provider, events, chunk_char_limit=1000)

    job = controller.start_full_chapter(TaskType.TRANSLATION, "b1", "c1")
    assert controller.cancel(TaskType.TRANSLATION, "c1") is True
    outcome = await job

    assert outcome.status == JobStatus.CANCELLED
    assert outcome.applied_count == 0
    assert provider.generate_calls == []
    assert store.writes == 0
    assert registry.get_task(outcome.task_id).status == TaskRunStatus.CANCELLED
    assert controller.get_state(TaskType.TRANSLATION, "c1").is_running is False


@pytest.mark.asyncio
async def test_second_background_start_is_refused(store, registry, chapter, events):
    provider = ScriptedProvider([
        turn(status("working"), _title(), batch(p1="One.", p2="Two.", p3="Three."), status("review"), status("end")),
    ])
    controller = _controller(store, registry, provider, events, chunk_char_limit=1000)

    job = controller.start_full_chapter(TaskType.TRANSLATION, "b1", "c1")
    with pytest.raises(WorkflowError):
        controller.start_full_chapter(TaskType.TRANSLATION, "b1", "c1")
    outcome = await job

    assert outcome.status == JobStatus.COMPLETED, outcome.message
    assert len(provider.generate_calls) == 1
    assert len([t for t in registry.all_tasks() if t.chapter_id == "c1"]) == 1


@pytest.mark.asyncio
async def test_failed_load_releases_chapter(store, registry, chapter, events):
    controller = _controller(store, registry, ScriptedProvider(), events)

    job = controller.start_full_chapter(TaskType.TRANSLATION, "b1", "c9")
    with pytest.raises(ChapterNotFoundError):
        await job
    assert controller.get_state(TaskType.TRANSLATION, "c9").is_running is False

"""Tests for the LLM gateway, error classification and provider adapters."""
from types import SimpleNamespace

import pytest

from conftest import ScriptedProvider, make_gateway
from transloom.config import Settings
from transloom.exceptions import LLMError, TaskCancelledError, TokenLimitError
from transloom.llm_gateway import gateway as gateway_module
from transloom.llm_gateway.errors import classify_error, is_token_limit_error
from transloom.llm_gateway.gateway import build_gateway
from transloom.llm_gateway.providers.anthropic_provider import (
    AnthropicProvider,
    to_anthropic_messages,
    to_anthropic_tools,
)
from transloom.llm_gateway.providers.openai_provider import OpenAIProvider
from transloom.services.abort import AbortHandle


class FlakyProvider(ScriptedProvider):
    def __init__(self, errors):
        super().__init__()
        self.errors = list(errors)
        self.attempts = 0

    async def chat(self, messages, temperature=None, max_tokens=None):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return await super().chat(messages, temperature, max_tokens)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(gateway_module, "get_retry_delay", lambda attempt: 0)


class TestChat:
    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        provider = FlakyProvider([TimeoutError("read timed out")])
        response = await make_gateway(provider).chat([{"role": "user", "content": "hi"}])
        assert response["content"] == "summary of the conversation"
        assert provider.attempts == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self):
        provider = FlakyProvider([ValueError("invalid_api_key")])
        with pytest.raises(LLMError):
            await make_gateway(provider).chat([{"role": "user", "content": "hi"}])
        assert provider.attempts == 1

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self):
        provider = FlakyProvider([ConnectionError("reset")] * 5)
        with pytest.raises(LLMError):
            await make_gateway(provider).chat([{"role": "user", "content": "hi"}])
        assert provider.attempts == 3

    @pytest.mark.asyncio
    async def test_token_limit_is_typed(self):
        provider = FlakyProvider([ValueError("maximum context length is 8192 tokens")])
        with pytest.raises(TokenLimitError):
            await make_gateway(provider).chat([{"role": "user", "content": "hi"}])


class TestGateway:
    def test_model_id(self):
        assert make_gateway(ScriptedProvider()).model_id() == "fake:scripted"

    def test_unconfigured_provider(self):
        with pytest.raises(LLMError):
            make_gateway(ScriptedProvider()).get_provider("anthropic")

    @pytest.mark.asyncio
    async def test_stream_wraps_provider_errors(self):
        provider = ScriptedProvider([RuntimeError("bad gateway")])
        with pytest.raises(LLMError):
            await make_gateway(provider).generate([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_stream_passes_cancellation_through(self):
        abort = AbortHandle()
        abort.abort()
        provider = ScriptedProvider([("", [])])
        with pytest.raises(TaskCancelledError):
            await make_gateway(provider).generate([{"role": "user", "content": "hi"}], abort=abort)

    def test_build_without_credentials(self):
        gateway = build_gateway(Settings(openai_api_key=None, anthropic_api_key=None))
        assert gateway.providers == {}

    def test_build_with_openai_key(self):
        gateway = build_gateway(Settings(openai_api_key="sk-test", default_model="gpt-4o"))
        assert gateway.model_id() == "openai:gpt-4o"


class TestErrorClassification:
    @pytest.mark.parametrize("message", [
        "This model's maximum context length is 8192 tokens",
        "prompt is too long: 210000 tokens > 200000 maximum",
        "Input token limit exceeded",
    ])
    def test_token_limit_messages(self, message):
        assert is_token_limit_error(ValueError(message))

    def test_plain_timeout_is_not_token_limit(self):
        assert not is_token_limit_error(TimeoutError("read timed out"))

    def test_classification(self):
        assert classify_error(TimeoutError("Request timed out")) == (True, "connection_error")
        assert classify_error(ValueError("invalid_api_key"))[0] is False
        assert classify_error(ValueError("Error 429: too many requests"))[0] is True


class _FakeStream:
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk

    async def close(self):
        self.closed = True


def _delta_chunk(content=None, tool_calls=None, finish_reason=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(usage=None, choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _fragment(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class TestOpenAIStreaming:
    @pytest.mark.asyncio
    async def test_tool_call_fragments_are_assembled(self):
        stream = _FakeStream([
            _delta_chunk(content="Working on it. "),
            _delta_chunk(tool_calls=[_fragment(0, "call_a", "update_task_status", '{"sta')]),
            _delta_chunk(tool_calls=[_fragment(0, arguments='tus": "working"}')]),
            _delta_chunk(tool_calls=[_fragment(1, "call_b", "add_translation_batch", '{"paragraphs": []}')]),
            _delta_chunk(finish_reason="tool_calls"),
        ])
        provider = OpenAIProvider(api_key="test", model="gpt-test")
        requests = []

        async def create(**kwargs):
            requests.append(kwargs)
            return stream

        provider.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        result = await provider.generate([{"role": "user", "content": "go"}], tools=[{"type": "function"}])

        assert result.text == "Working on it. "
        assert [c.name for c in result.tool_calls] == ["update_task_status", "add_translation_batch"]
        assert result.tool_calls[0].arguments == '{"status": "working"}'
        assert result.finish_reason == "tool_calls"
        assert requests[0]["stream"] is True
        assert stream.closed


class TestAnthropicConversion:
    def test_history_conversion(self):
        system, messages = to_anthropic_messages([
            {"role": "system", "content": "Translate."},
            {"role": "user", "content": "Chunk 1"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "update_task_status", "arguments": '{"status": "working"}'},
                }],
            },
            {"role": "tool", "tool_call_id": "call_1", "content": '{"success": true}'},
            {"role": "tool", "tool_call_id": "call_2", "content": '{"success": false}'},
        ])
        assert system == "Translate."
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"][0]["input"] == {"status": "working"}
        assert [b["tool_use_id"] for b in messages[2]["content"]] == ["call_1", "call_2"]

    def test_tool_conversion(self):
        tools = to_anthropic_tools([{
            "type": "function",
            "function": {"name": "lookup", "description": "Look up", "parameters": {"type": "object"}},
        }])
        assert tools == [{"name": "lookup", "description": "Look up", "input_schema": {"type": "object"}}]


class _FakeMessageStream:
    """Stands in for the SDK's message stream context manager."""

    def __init__(self, events, on_event=None):
        self.events = events
        self.on_event = on_event
        self.final_requested = False
        self.exited = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for index, event in enumerate(self.events):
            if self.on_event is not None:
                self.on_event(index)
            yield event

    async def get_final_message(self):
        self.final_requested = True
        tool_block = SimpleNamespace(type="tool_use", id="toolu_1", name="update_task_status", input={"status": "end"})
        return SimpleNamespace(
            content=[tool_block],
            stop_reason="tool_use",
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
        )


def _anthropic_provider(stream):
    provider = AnthropicProvider(api_key="test", model="claude-test")
    provider.client = SimpleNamespace(messages=SimpleNamespace(stream=lambda **kwargs: stream))
    return provider


class TestAnthropicStreaming:
    @pytest.mark.asyncio
    async def test_text_and_tool_use(self):
        stream = _FakeMessageStream([
            SimpleNamespace(type="text", text="Done."),
            SimpleNamespace(type="input_json", partial_json='{"status"'),
        ])
        result = await _anthropic_provider(stream).generate([{"role": "user", "content": "go"}])

        assert result.text == "Done."
        assert result.tool_calls[0].name == "update_task_status"
        assert stream.final_requested

    @pytest.mark.asyncio
    async def test_abort_is_seen_during_tool_use_deltas(self):
        abort = AbortHandle()

        def fire_on_second(index):
            if index == 1:
                abort.abort("stop")

        stream = _FakeMessageStream(
            [SimpleNamespace(type="input_json", partial_json="{") for _ in range(5)],
            on_event=fire_on_second,
        )
        chunks = []
        with pytest.raises(TaskCancelledError):
            async for chunk in _anthropic_provider(stream).stream_generate(
                [{"role": "user", "content": "go"}], abort=abort
            ):
                chunks.append(chunk)

        assert chunks == []
        assert stream.exited
        assert not stream.final_requested

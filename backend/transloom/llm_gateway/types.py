"""
LLM Gateway Types / LLM 网关数据类型
Streaming chunks and collected generation results.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

from transloom.schemas.tools import ToolCall


@dataclass
class StreamChunk:
    """
    流式片段 / One streamed piece of a response

    ``text`` carries incremental text; ``tool_calls`` carries tool calls whose
    arguments are complete (providers assemble argument fragments themselves).
    """

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = ""
    usage: Dict[str, int] = field(default_factory=dict)


@dataclass
class GenerationResult:
    """收集后的生成结果 / A full response collected from a stream"""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = ""
    usage: Dict[str, int] = field(default_factory=dict)

    def add(self, chunk: StreamChunk) -> None:
        if chunk.text:
            self.text += chunk.text
        if chunk.tool_calls:
            self.tool_calls.extend(chunk.tool_calls)
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason
        if chunk.usage:
            self.usage = dict(chunk.usage)

    def assistant_message(self) -> Dict[str, Any]:
        """OpenAI-style assistant message for the running history."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.text}
        if self.tool_calls:
            message["tool_calls"] = [tool_call_to_message(call) for call in self.tool_calls]
        return message


def tool_call_to_message(call: ToolCall) -> Dict[str, Any]:
    arguments = call.arguments
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments, ensure_ascii=False)
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": arguments},
    }

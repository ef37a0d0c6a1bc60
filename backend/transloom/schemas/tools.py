"""
Tool-call Data Models / 工具调用数据模型

Tool results are returned to the model as JSON strings, so every failure on
this surface is a value (``success=False``) rather than an exception.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class BatchItem(BaseModel):
    """One paragraph result inside a batch / 批次中的单个段落结果"""

    paragraph_id: str = Field(..., description="Stable paragraph ID / 段落ID")
    translated_text: str = Field(..., description="Translated text / 译文")


class ParagraphUpdate(BaseModel):
    """A committed paragraph text, as streamed to the controller / 已提交的段落更新"""

    model_config = {"frozen": True}

    paragraph_id: str
    text: str


class ToolCall(BaseModel):
    """Tool invocation requested by the model / 模型请求的工具调用"""

    id: str = Field(default="", description="Provider call ID / 调用ID")
    name: str = Field(..., description="Tool name / 工具名")
    arguments: Union[str, Dict[str, Any]] = Field(
        default="",
        description="Raw JSON arguments or a decoded dict / 参数",
    )


class ToolResult(BaseModel):
    """Structured tool outcome / 工具执行结果"""

    success: bool = Field(..., description="Whether the call succeeded / 是否成功")
    message: str = Field(default="", description="Success message / 成功信息")
    error: str = Field(default="", description="Failure reason / 失败原因")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal warnings / 警告")
    data: Dict[str, Any] = Field(default_factory=dict, description="Extra payload / 附加数据")

    @classmethod
    def ok(cls, message: str = "", warnings: Optional[List[str]] = None, **data: Any) -> "ToolResult":
        return cls(success=True, message=message, warnings=list(warnings or []), data=data)

    @classmethod
    def fail(cls, error: str, **data: Any) -> "ToolResult":
        return cls(success=False, error=error, data=data)

    def to_tool_output(self) -> str:
        """Serialize for the model: payload keys are flattened next to success/error."""
        payload: Dict[str, Any] = {"success": self.success}
        if self.success:
            if self.message:
                payload["message"] = self.message
        else:
            payload["error"] = self.error
        if self.warnings:
            payload["warnings"] = self.warnings
        payload.update(self.data)
        return json.dumps(payload, ensure_ascii=False)


class ActionInfo(BaseModel):
    """UI-facing record of an effectful operation / 操作通知"""

    type: str = Field(..., description="create / update / delete")
    entity: str = Field(..., description="Affected entity, e.g. translation / 实体")
    data: Dict[str, Any] = Field(default_factory=dict, description="Details / 详情")

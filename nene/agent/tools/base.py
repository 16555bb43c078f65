"""工具抽象基类。

所有可被 Agent 调用的工具都应继承 Tool，并实现：
- name: 工具名
- description: 工具描述
- parameters: JSON Schema 参数定义
- execute: 实际执行逻辑，返回 ToolResult
可选实现 make_approval，在执行前向用户请求确认。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class ToolResult:
    """工具执行结果；is_error 为 True 时内容是错误描述。"""

    content: str
    is_error: bool = False

    @classmethod
    def ok(cls, content: str) -> "ToolResult":
        return cls(content, False)

    @classmethod
    def error(cls, content: str) -> "ToolResult":
        return cls(content, True)


@dataclass
class Approval:
    """执行前的人工确认请求。"""

    justification: str
    what: str
    approved: bool = False
    rejected: bool = False
    reason: str = ""

    def approve(self) -> None:
        self.approved = True
        self.rejected = False

    def reject(self, reason: str = "") -> None:
        self.rejected = True
        self.approved = False
        self.reason = reason


class Tool(ABC):
    """Agent 工具统一接口。"""

    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        """函数调用时使用的工具名（需全局唯一）。"""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """提供给模型的工具用途描述。"""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """工具参数的 JSON Schema。"""
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """执行工具。"""
        pass

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        """需要人工确认时返回 Approval，默认不需要。"""
        return None

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """按 JSON Schema 校验参数，返回错误列表（空列表表示通过）。"""
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema must be object type, got {schema.get('type')!r}")
        return self._validate(params, {**schema, "type": "object"}, "")

    def _validate(self, val: Any, schema: dict[str, Any], path: str) -> list[str]:
        """递归校验对象/数组等嵌套结构。"""
        t, label = schema.get("type"), path or "parameter"
        if t in self._TYPE_MAP and not isinstance(val, self._TYPE_MAP[t]):
            return [f"{label} should be {t}"]
        # bool 是 int 的子类，这里单独排除
        if t in ("integer", "number") and isinstance(val, bool):
            return [f"{label} should be {t}"]

        errors = []
        if "enum" in schema and val not in schema["enum"]:
            errors.append(f"{label} must be one of {schema['enum']}")
        if t in ("integer", "number"):
            if "minimum" in schema and val < schema["minimum"]:
                errors.append(f"{label} must be >= {schema['minimum']}")
            if "maximum" in schema and val > schema["maximum"]:
                errors.append(f"{label} must be <= {schema['maximum']}")
        if t == "string":
            if "minLength" in schema and len(val) < schema["minLength"]:
                errors.append(f"{label} must be at least {schema['minLength']} chars")
        if t == "object":
            props = schema.get("properties", {})
            for k in schema.get("required", []):
                if k not in val:
                    errors.append(f"missing required {path + '.' + k if path else k}")
            for k, v in val.items():
                if k in props:
                    errors.extend(self._validate(v, props[k], path + '.' + k if path else k))
        if t == "array" and "items" in schema:
            for i, item in enumerate(val):
                errors.extend(self._validate(item, schema["items"], f"{path}[{i}]" if path else f"[{i}]"))
        return errors

    def to_schema(self) -> dict[str, Any]:
        """转换为 OpenAI function schema 结构。"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            }
        }


class ContextualTool(Tool):
    """需要知道当前渠道与会话的工具（如 message）。"""

    def __init__(self) -> None:
        self._channel = ""
        self._chat_id = ""

    def set_context(self, channel: str, chat_id: str) -> None:
        self._channel = channel
        self._chat_id = chat_id

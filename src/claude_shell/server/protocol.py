"""JSON-RPC 2.0 message models and line parsing."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from claude_shell.constants import INVALID_REQUEST, PARSE_ERROR, RequestId
from claude_shell.runner.extract import parse_json


class JsonRpcRequest(BaseModel):
    """An inbound request or notification. Never mutated after receipt."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    jsonrpc: str = "2.0"
    id: int | str | None = None
    method: str = ""
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def is_notification(self) -> bool:
        """Messages without a correlation id never get a response."""
        return self.id is None


class JsonRpcError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """Exactly one of ``result`` / ``error`` is serialized."""

    model_config = ConfigDict(frozen=True)

    id: RequestId
    result: Any = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_json(self) -> str:
        """Serialize as a single protocol line (no trailing newline)."""
        payload: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        # ASCII escapes keep lone surrogates from the input encodable.
        return json.dumps(payload)


def result_response(request_id: RequestId, result: Any) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)


def error_response(
    request_id: RequestId, code: int, message: str, data: Any = None
) -> JsonRpcResponse:
    return JsonRpcResponse(
        id=request_id, error=JsonRpcError(code=code, message=message, data=data)
    )


def text_content(text: str) -> dict[str, Any]:
    """MCP tool result carrying a single text block."""
    return {"content": [{"type": "text", "text": text}]}


def parse_request(line: str) -> JsonRpcRequest | JsonRpcResponse:
    """Parse one input line.

    Returns the request, or the error response to send back when the
    line is not valid JSON (-32700) or not a request object (-32600).
    """
    parsed = parse_json(line)
    if not parsed.ok:
        return error_response(None, PARSE_ERROR, "Parse error")

    if not isinstance(parsed.value, dict):
        return error_response(None, INVALID_REQUEST, "Invalid Request")

    try:
        return JsonRpcRequest.model_validate(parsed.value)
    except ValidationError as exc:
        raw_id = parsed.value.get("id")
        request_id = raw_id if isinstance(raw_id, (int, str)) else None
        return error_response(request_id, INVALID_REQUEST, "Invalid Request", str(exc))

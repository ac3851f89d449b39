"""Helpers building uniform ``CallToolResult`` values."""

import json
from typing import Any

from mcp import types as mcp_types


def text_result(text: str, *, is_error: bool = False) -> mcp_types.CallToolResult:
    return mcp_types.CallToolResult(
        content=[mcp_types.TextContent(type="text", text=text)],
        isError=is_error,
    )


def error_result(text: str) -> mcp_types.CallToolResult:
    return text_result(text, is_error=True)


def json_result(payload: Any, *, is_error: bool = False) -> mcp_types.CallToolResult:
    return text_result(json.dumps(payload, indent=2, default=str), is_error=is_error)


def result_text(result: mcp_types.CallToolResult) -> str:
    """Concatenated text of every text item in *result*."""
    return "\n".join(
        item.text for item in result.content if isinstance(item, mcp_types.TextContent)
    )


def normalize_call_result(result: mcp_types.CallToolResult) -> mcp_types.CallToolResult:
    """Return *result* with a non-empty content list.

    Empty downstream content is replaced by one text item holding the
    JSON dump of the result.
    """
    if result.content:
        return result
    payload = result.model_dump(mode="json", exclude_none=True)
    return result.model_copy(
        update={"content": [mcp_types.TextContent(type="text", text=json.dumps(payload, indent=2))]}
    )

"""Tool result payloads.

Every tool returns MCP content plus a ``data`` block. Failures set
``isError`` and carry the error kind unchanged, so a client can tell a
retryable storage failure from a state conflict without parsing text.
"""

from typing import Any

from ..database.errors import RepositoryException


def success_result(message: str, **data: Any) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": data,
    }


def error_result(message: str, kind: str = "invalid_input", retryable: bool = False) -> dict[str, Any]:
    return {
        "isError": True,
        "content": [{"type": "text", "text": message}],
        "data": {"error": {"kind": kind, "message": message, "retryable": retryable}},
    }


def repository_error_result(error: RepositoryException) -> dict[str, Any]:
    """Map a repository exception to an error result, keeping its kind."""
    return error_result(str(error), kind=error.kind, retryable=error.retryable)

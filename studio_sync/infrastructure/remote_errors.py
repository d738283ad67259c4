from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any, Optional

import requests

RETRYABLE_STATUS_CODES = frozenset({408, 429})
UNKNOWN_REMOTE_ERROR = "Unknown remote error."
MAX_ERROR_TEXT = 500

ErrorExtractor = Callable[[Any, Optional[BaseException]], Optional[str]]


def extract_response_status_code(ex: BaseException) -> int | None:
    response = getattr(ex, "response", None)
    return getattr(response, "status_code", None)


def _clip(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_ERROR_TEXT:
        return text[:MAX_ERROR_TEXT] + "..."
    return text


def _json_body(response: Any) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except (ValueError, json.JSONDecodeError):
        return None


def _message_from_mapping(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        nested = error.get("message") or error.get("msg")
        if isinstance(nested, str) and nested.strip():
            return nested
    if isinstance(error, str) and error.strip():
        return error
    for key in ("message", "msg", "error_description"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def from_json_body(response: Any, _exc: BaseException | None) -> str | None:
    return _message_from_mapping(_json_body(response))


def from_text_body(response: Any, _exc: BaseException | None) -> str | None:
    if response is None:
        return None
    text = getattr(response, "text", "") or ""
    if not text.strip() or text.lstrip().startswith(("{", "[", "<")):
        return None
    return text


def from_http_status(response: Any, _exc: BaseException | None) -> str | None:
    status_code = getattr(response, "status_code", None)
    if status_code is None:
        return None
    reason = getattr(response, "reason", "") or ""
    return f"HTTP {status_code} {reason}".strip()


def from_exception(_response: Any, exc: BaseException | None) -> str | None:
    if exc is None:
        return None
    text = str(exc)
    return text or type(exc).__name__


DEFAULT_EXTRACTORS: tuple[ErrorExtractor, ...] = (
    from_json_body,
    from_text_body,
    from_http_status,
    from_exception,
)


def extract_error_message(
    response: Any = None,
    exc: BaseException | None = None,
    extractors: Sequence[ErrorExtractor] = DEFAULT_EXTRACTORS,
) -> str:
    """Flatten whatever the remote side returned into one readable line.

    Extractors run in order and the first non-empty answer wins.
    """

    for extractor in extractors:
        message = extractor(response, exc)
        if message and message.strip():
            return _clip(message)
    return UNKNOWN_REMOTE_ERROR


def is_retryable_status(status_code: int | None) -> bool:
    if status_code is None:
        return False
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def is_retryable_exception(exc: BaseException) -> bool:
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError):
        return is_retryable_status(extract_response_status_code(exc))
    return False


def is_application_rejection(body: Any) -> bool:
    return isinstance(body, dict) and body.get("success") is False


def is_unreachable_exception(exc: BaseException) -> bool:
    """True when the request never got an answer from the remote."""
    return isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError))

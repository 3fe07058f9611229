"""HTTP boundary for the contents API: status/message -> typed storage errors.

The upstream API has no structured conflict code, so a stale ``sha`` is
recognised by status and message text here and nowhere else.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from storage.errors import (
    AuthFailureError,
    ConflictError,
    NotFoundError,
    StorageError,
    TransportFailureError,
)

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/vnd.github.v3+json"

_CONFLICT_MARKERS = ("does not match", "sha", "already exists", "conflict")
_RATE_LIMIT_MARKERS = ("rate limit", "abuse")


def error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase


def looks_like_conflict(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _CONFLICT_MARKERS)


def raise_for_response(response: httpx.Response, *, path: str | None, operation: str) -> None:
    """Translate a non-2xx response into the matching StorageError subclass."""
    if response.is_success:
        return
    status = response.status_code
    message = error_message(response)
    detail = f"GitHub API error during {operation} ({status}): {message}"

    if status == 401:
        raise AuthFailureError(detail, path=path)
    if status == 403:
        if any(marker in message.lower() for marker in _RATE_LIMIT_MARKERS):
            raise TransportFailureError(detail, path=path)
        raise AuthFailureError(detail, path=path)
    if status == 404:
        raise NotFoundError(detail, path=path)
    # @@@conflict-shim - 409 is always a conflict; 422 only when the message talks about the sha or an existing file.
    # Ambiguous conflict-like failures are treated as conflicts rather than guessed at.
    if status == 409 or (status == 422 and looks_like_conflict(message)):
        raise ConflictError(detail, path=path)
    if status >= 500:
        raise TransportFailureError(detail, path=path)
    raise StorageError(detail, path=path)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    path: str | None,
    operation: str,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: dict[str, Any] | None = None,
) -> httpx.Response:
    try:
        response = await client.request(method, url, headers=headers, params=params, json=json)
    except httpx.TimeoutException as exc:
        raise TransportFailureError(f"GitHub API timeout during {operation}: {exc}", path=path) from exc
    except httpx.TransportError as exc:
        raise TransportFailureError(f"GitHub API unreachable during {operation}: {exc}", path=path) from exc
    logger.debug("%s %s -> %s", method, url, response.status_code)
    raise_for_response(response, path=path, operation=operation)
    return response

"""JSON response envelope shared by the API endpoints: ``{success, data?, error?}``."""

from __future__ import annotations

from typing import Any, Dict, Optional

from django.http import JsonResponse

NO_STORE_HEADERS = {
    'Cache-Control': 'no-store, private',
    'Pragma': 'no-cache',
}


def api_success(data: Any = None, *, status: int = 200, no_store: bool = False) -> JsonResponse:
    """Return ``{"success": true, "data": ...}``."""

    response = JsonResponse({'success': True, 'data': data}, status=status)
    if no_store:
        _apply_no_store(response)
    return response


def api_error(
    message: str,
    *,
    status: int,
    details: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
    no_store: bool = False,
) -> JsonResponse:
    """Return ``{"success": false, "error": message}`` with an optional ``details`` field."""

    payload: Dict[str, Any] = {'success': False, 'error': message}
    if details:
        payload['details'] = details
    response = JsonResponse(payload, status=status)
    for name, value in (headers or {}).items():
        response[name] = value
    if no_store:
        _apply_no_store(response)
    return response


def _apply_no_store(response: JsonResponse) -> None:
    for name, value in NO_STORE_HEADERS.items():
        response[name] = value

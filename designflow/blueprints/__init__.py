"""
DesignFlow
Blueprint registry and shared request helpers.
"""

from flask import request

from designflow.core.exceptions import ValidationError


def json_body() -> dict:
    """Return the JSON body as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def current_user(data: dict | None = None) -> str:
    """Best-effort current user extraction (no auth enforcement)."""
    return (
        request.headers.get("X-User", "")
        or (data or {}).get("actor", "")
        or "system"
    )


def acting_role(data: dict | None = None) -> str:
    """Role the caller acts in, from the X-Role header or ``acting_role`` in the body."""
    role = request.headers.get("X-Role", "") or (data or {}).get("acting_role", "")
    if not role:
        raise ValidationError("acting_role is required", details={"acting_role": "client or designer"})
    return role


def int_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Query parameter '{name}' must be an integer")

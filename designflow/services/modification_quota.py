"""
Modification quota — pure accounting over a project's modification requests.

A project is granted ``total`` free modifications.  Completed requests,
taken in request-number order, consume the free quota first; every
completed request beyond it is billed as an additional modification.
Open requests are flagged against whatever free slots the completed ones
leave, so the stored flags agree with the accounting.

Nothing in here touches storage, so the same rules serve the request
service, the workflow validation and the API.
"""

from __future__ import annotations

DEFAULT_UNIT_FEE = 100_000
URGENT_MULTIPLIER = 1.5

URGENCY_NORMAL = "normal"
URGENCY_URGENT = "urgent"
URGENCY_LEVELS = (URGENCY_NORMAL, URGENCY_URGENT)

REQUEST_STATUSES = ("pending", "approved", "in_progress", "completed", "rejected")
ACTIVE_REQUEST_STATUSES = frozenset({"approved", "in_progress"})
OPEN_REQUEST_STATUSES = frozenset({"pending", "approved", "in_progress"})

STATUS_COLOR_ERROR = "error"
STATUS_COLOR_WARNING = "warning"
STATUS_COLOR_SUCCESS = "success"


def quote_additional_cost(urgency: str = URGENCY_NORMAL, unit_fee: int = DEFAULT_UNIT_FEE) -> int:
    """Price of one billed modification."""
    if urgency == URGENCY_URGENT:
        return int(unit_fee * URGENT_MULTIPLIER)
    return int(unit_fee)


def _status_message(total: int, remaining: int, additional_used: int, should_warn: bool) -> str:
    if remaining == 0 and additional_used > 0:
        return (f"All {total} free modifications used; "
                f"{additional_used} additional modification(s) billed")
    if remaining == 0:
        return "No free modifications remaining; further requests incur an additional cost"
    if should_warn:
        return "Only 1 free modification remaining"
    return f"{remaining} of {total} free modifications remaining"


def compute_quota_status(total_allowed: int, requests: list[dict], *,
                         attempting_new_request: bool = False,
                         unit_fee: int = DEFAULT_UNIT_FEE) -> dict:
    """Summarise quota usage for one project.

    Args:
        total_allowed: Free modifications granted to the project.
        requests: The project's modification requests (any status).
        attempting_new_request: True when the caller is about to file another
            request; with no free quota left this alone exceeds the limit.
        unit_fee: Fallback price for a billed request without a quoted amount.
    """
    total = max(0, int(total_allowed or 0))
    completed = sorted(
        (r for r in requests if r.get("status") == "completed"),
        key=lambda r: r.get("request_number") or 0,
    )

    used = min(len(completed), total)
    billed = completed[total:]
    additional_used = len(billed)
    total_additional_cost = sum(
        r.get("additional_cost_amount") or quote_additional_cost(r.get("urgency", URGENCY_NORMAL), unit_fee)
        for r in billed
    )

    in_progress = sum(1 for r in requests if r.get("status") in ACTIVE_REQUEST_STATUSES)
    remaining = max(0, total - used)
    should_warn = 0 < remaining <= 1
    billed_open = any(
        r.get("is_additional_cost") and r.get("status") in OPEN_REQUEST_STATUSES for r in requests
    )
    is_limit_exceeded = remaining == 0 and (attempting_new_request or additional_used > 0 or billed_open)

    if remaining == 0:
        color = STATUS_COLOR_ERROR
    elif should_warn:
        color = STATUS_COLOR_WARNING
    else:
        color = STATUS_COLOR_SUCCESS

    return {
        "total_allowed": total,
        "used": used,
        "remaining": remaining,
        "in_progress": in_progress,
        "pending": sum(1 for r in requests if r.get("status") == "pending"),
        "additional_used": additional_used,
        "total_additional_cost": total_additional_cost,
        "status_color": color,
        "status_message": _status_message(total, remaining, additional_used, should_warn),
        "is_limit_exceeded": is_limit_exceeded,
        "should_warn": should_warn,
    }


def assign_billing(total_allowed: int, requests: list[dict], *,
                   unit_fee: int = DEFAULT_UNIT_FEE) -> dict[str, tuple[bool, int | None]]:
    """Decide which requests are billed, keyed by request id.

    Mirrors ``compute_quota_status``: completed requests take the free
    slots first in request-number order, open requests share whatever is
    left in the same order.  Rejected requests hold no slot and are not
    returned.  A billed request keeps its existing quote; a newly billed one
    is quoted at its urgency.
    """
    total = max(0, int(total_allowed or 0))
    ordered = sorted(
        (r for r in requests if r.get("status") != "rejected"),
        key=lambda r: r.get("request_number") or 0,
    )
    completed = [r for r in ordered if r.get("status") == "completed"]
    still_open = [r for r in ordered if r.get("status") != "completed"]

    billing = {}
    free_left = total
    for r in completed + still_open:
        if free_left > 0:
            free_left -= 1
            billing[r["id"]] = (False, None)
        else:
            amount = r.get("additional_cost_amount") or quote_additional_cost(
                r.get("urgency", URGENCY_NORMAL), unit_fee,
            )
            billing[r["id"]] = (True, amount)
    return billing

"""
Modification request service.

Request lifecycle:
    pending ──approve──▶ approved ──start──▶ in_progress ──complete──▶ completed
       │                    └─────────────complete──────────────────────▲
       └──reject──▶ rejected

Requests live under ``modification:<project_id>:<request_id>``.  Numbers are
sequential per project; the create is a compare-and-set on a fresh key so a
racing duplicate surfaces as StaleRevisionError rather than a silent
overwrite.

Rejecting or completing a request re-runs the quota accounting: billing
flags on every live request are re-derived from it and the resulting
remaining count is written back onto the project.  ``sync_quota`` does the
same on demand and can be re-run after an interrupted sync.
"""

from __future__ import annotations

import logging

from designflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    StaleRevisionError,
    ValidationError,
)
from designflow.services.events import EventSink, emit
from designflow.services.modification_quota import (
    DEFAULT_UNIT_FEE,
    URGENCY_LEVELS,
    URGENCY_NORMAL,
    URGENCY_URGENT,
    assign_billing,
    compute_quota_status,
    quote_additional_cost,
)
from designflow.services.project_service import ProjectService
from designflow.services.revision_store import RevisionStore
from designflow.utils.helpers import iso_date, new_id, utc_now_iso

logger = logging.getLogger(__name__)

REQUEST_KEY = "modification:{}:{}"
REQUEST_PREFIX = "modification:{}:"

# Project statuses in which the client may file a modification request
REQUESTABLE_PROJECT_STATUSES = frozenset({
    "feedback_period", "modification_in_progress", "completion_requested",
})

# Store writes the quota sync may lose to a concurrent writer before giving up
SYNC_ATTEMPTS = 3

REQUEST_TRANSITIONS = {
    "approved": {"pending"},
    "rejected": {"pending"},
    "in_progress": {"approved"},
    "completed": {"approved", "in_progress"},
}


class ModificationService:
    """File and advance modification requests, and report quota usage."""

    def __init__(self, store: RevisionStore, projects: ProjectService, feedback=None, *,
                 unit_fee: int = DEFAULT_UNIT_FEE, on_event: EventSink | None = None):
        self.store = store
        self.projects = projects
        self.feedback = feedback
        self.unit_fee = unit_fee
        self.on_event = on_event

    # ── Internal ──────────────────────────────────────────────────────

    def _load(self, project_id: str, request_id: str) -> tuple[dict, int]:
        request, revision = self.store.get_with_revision(REQUEST_KEY.format(project_id, request_id))
        if request is None:
            raise NotFoundError(resource="ModificationRequest", resource_id=request_id)
        return request, revision

    def _advance(self, project_id: str, request_id: str, target: str, actor: str | None,
                 **fields) -> dict:
        request, revision = self._load(project_id, request_id)
        previous = request["status"]
        if previous not in REQUEST_TRANSITIONS[target]:
            raise InvalidTransitionError(
                previous, target,
                f"Modification request #{request['request_number']} cannot move from "
                f"'{previous}' to '{target}'",
            )
        request["status"] = target
        request.update(fields)
        request["updated_at"] = utc_now_iso()
        self.store.put(REQUEST_KEY.format(project_id, request_id), request, expected_revision=revision)

        action = {
            "approved": "modification_request.approve",
            "rejected": "modification_request.reject",
            "in_progress": "modification_request.start",
            "completed": "modification_request.complete",
        }[target]
        logger.info(
            "Modification request #%d %s -> %s", request["request_number"], previous, target,
            extra={"project_id": project_id, "request_number": request["request_number"],
                   "event_type": action},
        )
        emit(
            self.on_event,
            entity_type="modification_request",
            entity_id=request_id,
            action=action,
            actor=actor,
            project_id=project_id,
            diff={"status": {"old": previous, "new": target}},
        )
        return request

    # ── Commands ──────────────────────────────────────────────────────

    def create_request(
        self,
        project_id: str,
        *,
        description: str,
        requested_by: str,
        urgency: str = URGENCY_NORMAL,
        feedback_ids: list[str] | None = None,
        estimated_completion_date=None,
        notes: str | None = None,
    ) -> dict:
        """File request N+1 for a project.

        The request is flagged as an additional cost when every free slot is
        already held by a non-rejected request.  The flag is re-derived
        whenever a request is rejected or completed.

        Raises:
            NotFoundError: unknown project.
            ValidationError: missing description or unknown urgency.
            InvalidTransitionError: the project's status does not accept requests.
        """
        errors = {}
        if not (description or "").strip():
            errors["description"] = "description is required"
        if urgency not in URGENCY_LEVELS:
            errors["urgency"] = f"urgency must be one of {', '.join(URGENCY_LEVELS)}"
        if feedback_ids is not None and not isinstance(feedback_ids, list):
            errors["feedback_ids"] = "feedback_ids must be a list"
        if errors:
            raise ValidationError("Invalid modification request", details=errors)

        project = self.projects.get_project(project_id)
        if project["status"] not in REQUESTABLE_PROJECT_STATUSES:
            raise InvalidTransitionError(
                project["status"], None,
                f"Modification requests are not accepted while the project is '{project['status']}'",
            )

        requests = self.list_requests(project_id)
        number = max((r["request_number"] for r in requests), default=0) + 1

        now = utc_now_iso()
        request = {
            "id": new_id(),
            "project_id": project_id,
            "request_number": number,
            "description": description.strip(),
            "status": "pending",
            "urgency": urgency,
            "is_additional_cost": False,
            "additional_cost_amount": None,
            "feedback_ids": list(feedback_ids or []),
            "requested_by": requested_by,
            "approved_by": None,
            "requested_at": now,
            "approved_at": None,
            "completed_at": None,
            "estimated_completion_date": iso_date(estimated_completion_date),
            "actual_completion_date": None,
            "notes": notes,
            "rejection_reason": None,
            "updated_at": now,
        }
        is_additional, amount = assign_billing(
            project["total_modification_count"], requests + [request], unit_fee=self.unit_fee,
        )[request["id"]]
        request["is_additional_cost"] = is_additional
        request["additional_cost_amount"] = amount
        self.store.put(REQUEST_KEY.format(project_id, request["id"]), request, expected_revision=0)

        logger.info(
            "Modification request #%d filed%s", number, " (additional cost)" if is_additional else "",
            extra={"project_id": project_id, "request_number": number,
                   "event_type": "modification_request.create"},
        )
        emit(
            self.on_event,
            entity_type="modification_request",
            entity_id=request["id"],
            action="modification_request.create",
            actor=requested_by,
            project_id=project_id,
            diff={"status": {"old": None, "new": "pending"},
                  "is_additional_cost": {"old": None, "new": is_additional}},
        )
        return request

    def approve_request(self, project_id: str, request_id: str, approved_by: str) -> dict:
        return self._advance(project_id, request_id, "approved", approved_by,
                             approved_by=approved_by, approved_at=utc_now_iso())

    def reject_request(self, project_id: str, request_id: str, rejection_reason: str,
                       rejected_by: str | None = None) -> dict:
        if not (rejection_reason or "").strip():
            raise ValidationError("rejection_reason is required")
        self._advance(project_id, request_id, "rejected", rejected_by,
                      rejection_reason=rejection_reason.strip())
        self.sync_quota(project_id)
        return self.get_request(project_id, request_id)

    def start_request(self, project_id: str, request_id: str, started_by: str | None = None) -> dict:
        return self._advance(project_id, request_id, "in_progress", started_by)

    def complete_request(self, project_id: str, request_id: str, completed_by: str | None = None,
                         actual_completion_date=None) -> dict:
        now = utc_now_iso()
        self._advance(
            project_id, request_id, "completed", completed_by,
            completed_at=now,
            actual_completion_date=iso_date(actual_completion_date) or now[:10],
        )
        self.sync_quota(project_id)
        return self.get_request(project_id, request_id)

    def sync_quota(self, project_id: str) -> dict:
        """Bring stored billing flags and the project's remaining count in line
        with the quota accounting, and return the quota status.

        Only converges stored state, so it is safe to call again after a sync
        that was cut short.

        Raises:
            StaleRevisionError: still losing write races after SYNC_ATTEMPTS.
        """
        for attempt in range(1, SYNC_ATTEMPTS + 1):
            try:
                self._reprice(project_id)
                quota = self.get_quota_status(project_id)
                self.projects.set_remaining_modifications(project_id, quota["remaining"])
                return quota
            except StaleRevisionError:
                if attempt == SYNC_ATTEMPTS:
                    raise
                logger.warning("Quota sync lost a write race (attempt %d/%d)", attempt, SYNC_ATTEMPTS,
                               extra={"project_id": project_id, "event_type": "modification_request.sync"})

    def _reprice(self, project_id: str) -> None:
        project = self.projects.get_project(project_id)
        stored = []
        for key in self.store.list_keys_by_prefix(REQUEST_PREFIX.format(project_id)):
            request, revision = self.store.get_with_revision(key)
            if request is not None:
                stored.append((key, request, revision))

        billing = assign_billing(project["total_modification_count"], [r for _, r, _ in stored],
                                 unit_fee=self.unit_fee)
        for key, request, revision in stored:
            if request["id"] not in billing:
                continue
            is_additional, amount = billing[request["id"]]
            if (request["is_additional_cost"], request["additional_cost_amount"]) == (is_additional, amount):
                continue
            previous = (request["is_additional_cost"], request["additional_cost_amount"])
            request["is_additional_cost"] = is_additional
            request["additional_cost_amount"] = amount
            request["updated_at"] = utc_now_iso()
            self.store.put(key, request, expected_revision=revision)

            logger.info(
                "Modification request #%d %s", request["request_number"],
                "now billed" if is_additional else "moved into the free quota",
                extra={"project_id": project_id, "request_number": request["request_number"],
                       "event_type": "modification_request.reprice"},
            )
            emit(
                self.on_event,
                entity_type="modification_request",
                entity_id=request["id"],
                action="modification_request.reprice",
                actor="system",
                project_id=project_id,
                diff={"is_additional_cost": {"old": previous[0], "new": is_additional},
                      "additional_cost_amount": {"old": previous[1], "new": amount}},
            )

    # ── Queries ───────────────────────────────────────────────────────

    def get_request(self, project_id: str, request_id: str) -> dict:
        request, _ = self._load(project_id, request_id)
        return request

    def list_requests(self, project_id: str, status: str | None = None) -> list[dict]:
        requests = self.store.list_values_by_prefix(REQUEST_PREFIX.format(project_id))
        if status:
            requests = [r for r in requests if r["status"] == status]
        return sorted(requests, key=lambda r: r["request_number"])

    def get_quota_status(self, project_id: str, attempting_new_request: bool = False) -> dict:
        project = self.projects.get_project(project_id)
        return compute_quota_status(
            project["total_modification_count"],
            self.list_requests(project_id),
            attempting_new_request=attempting_new_request,
            unit_fee=self.unit_fee,
        )

    def remaining_modifications(self, project_id: str) -> int:
        return self.get_quota_status(project_id)["remaining"]

    def calculate_additional_cost(self, project_id: str, urgency: str = URGENCY_NORMAL) -> dict:
        if urgency not in URGENCY_LEVELS:
            raise ValidationError(f"urgency must be one of {', '.join(URGENCY_LEVELS)}")
        quota = self.get_quota_status(project_id)
        if quota["remaining"] > 0:
            return {"is_additional_cost": False, "amount": 0, "urgency": urgency}
        return {
            "is_additional_cost": True,
            "amount": quote_additional_cost(urgency, self.unit_fee),
            "urgency": urgency,
        }

    def get_statistics(self, project_id: str) -> dict:
        requests = self.list_requests(project_id)
        stats = {s: 0 for s in ("pending", "approved", "in_progress", "completed", "rejected")}
        for r in requests:
            stats[r["status"]] += 1
        return {
            "total": len(requests),
            **stats,
            "additional_cost_requests": sum(
                1 for r in requests if r["is_additional_cost"] and r["status"] != "rejected"
            ),
            "urgent_requests": sum(1 for r in requests if r["urgency"] == URGENCY_URGENT),
        }

    def available_feedback_for_modification(self, project_id: str, report_id: str | None = None) -> list[dict]:
        """Current feedback snapshots not yet tied to a live request and not resolved."""
        if self.feedback is None:
            return []
        linked = {
            fid
            for r in self.list_requests(project_id)
            if r["status"] != "rejected"
            for fid in r.get("feedback_ids", [])
        }
        available = []
        for history in self.feedback.list_for_project(project_id):
            current = history["versions"][-1]["feedback"]
            if current["id"] in linked or current.get("status") == "resolved":
                continue
            if report_id and current.get("report_id") != report_id:
                continue
            available.append(current)
        return available

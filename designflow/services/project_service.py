"""
Project Service — creation and persistence of Project records.

Projects are stored under ``project:<id>``.  Status changes never happen
here: they go exclusively through the WorkflowController.  This service
only creates projects, reads them back with their store revision, and
writes them with an optimistic revision check on behalf of the controller
and the modification service.
"""

from __future__ import annotations

import logging

from designflow.core.exceptions import NotFoundError, ValidationError
from designflow.models.workflow import INITIAL_STATUS, PROJECT_STATUSES
from designflow.services.events import EventSink, emit
from designflow.services.revision_store import RevisionStore
from designflow.utils.helpers import iso_date, new_id, utc_now_iso

logger = logging.getLogger(__name__)

PROJECT_KEY = "project:{}"
PROJECT_PREFIX = "project:"

# Populated by the store read, never persisted inside the value
_TRANSIENT_FIELDS = ("revision",)


class ProjectService:
    """Create, load and save projects against a borrowed revision store."""

    def __init__(self, store: RevisionStore, *, default_modification_count: int = 3,
                 on_event: EventSink | None = None):
        self.store = store
        self.default_modification_count = default_modification_count
        self.on_event = on_event

    # ── Create ────────────────────────────────────────────────────────

    def create_project(
        self,
        *,
        client_id: str,
        designer_id: str,
        name: str = "",
        description: str = "",
        start_date=None,
        draft_deadline=None,
        first_review_deadline=None,
        final_deadline=None,
        total_modification_count: int | None = None,
        created_by: str | None = None,
    ) -> dict:
        """Create a project in ``creation_pending``.

        Raises:
            ValidationError: missing party ids or a negative modification count.
        """
        errors = {}
        if not (client_id or "").strip():
            errors["client_id"] = "client_id is required"
        if not (designer_id or "").strip():
            errors["designer_id"] = "designer_id is required"

        total = self.default_modification_count if total_modification_count is None else total_modification_count
        try:
            total = int(total)
        except (TypeError, ValueError):
            errors["total_modification_count"] = "total_modification_count must be an integer"
        else:
            if total < 0:
                errors["total_modification_count"] = "total_modification_count must be >= 0"
        if errors:
            raise ValidationError("Invalid project", details=errors)

        now = utc_now_iso()
        project = {
            "id": new_id(),
            "name": (name or "").strip(),
            "description": description or "",
            "client_id": client_id.strip(),
            "designer_id": designer_id.strip(),
            "status": INITIAL_STATUS,
            "start_date": iso_date(start_date),
            "draft_deadline": iso_date(draft_deadline),
            "first_review_deadline": iso_date(first_review_deadline),
            "final_deadline": iso_date(final_deadline),
            "total_modification_count": total,
            "remaining_modification_count": total,
            "completion_requested_at": None,
            "completion_note": None,
            "final_deliverables": [],
            "completed_at": None,
            "archived_at": None,
            "status_timestamps": {INITIAL_STATUS: now},
            "created_at": now,
            "updated_at": now,
        }
        revision = self.store.put(PROJECT_KEY.format(project["id"]), project, expected_revision=0)

        logger.info("Project created", extra={"project_id": project["id"], "event_type": "project.create"})
        emit(
            self.on_event,
            entity_type="project",
            entity_id=project["id"],
            action="project.create",
            actor=created_by or project["designer_id"],
            project_id=project["id"],
            diff={"status": {"old": None, "new": INITIAL_STATUS}},
        )
        return {**project, "revision": revision}

    # ── Read ──────────────────────────────────────────────────────────

    def get_project(self, project_id: str) -> dict:
        value, revision = self.store.get_with_revision(PROJECT_KEY.format(project_id))
        if value is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return {**value, "revision": revision}

    def exists(self, project_id: str) -> bool:
        return self.store.get(PROJECT_KEY.format(project_id)) is not None

    def list_projects(self, *, client_id: str | None = None, designer_id: str | None = None,
                      status: str | None = None) -> list[dict]:
        if status is not None and status not in PROJECT_STATUSES:
            raise ValidationError(f"Unknown status '{status}'")
        projects = []
        for key in self.store.list_keys_by_prefix(PROJECT_PREFIX):
            value, revision = self.store.get_with_revision(key)
            if value is None:
                continue
            if client_id and value.get("client_id") != client_id:
                continue
            if designer_id and value.get("designer_id") != designer_id:
                continue
            if status and value.get("status") != status:
                continue
            projects.append({**value, "revision": revision})
        projects.sort(key=lambda p: p.get("created_at") or "")
        return projects

    # ── Write ─────────────────────────────────────────────────────────

    def save_project(self, project: dict, *, expected_revision: int) -> dict:
        """Persist ``project`` only if nobody wrote it since ``expected_revision``."""
        value = {k: v for k, v in project.items() if k not in _TRANSIENT_FIELDS}
        revision = self.store.put(PROJECT_KEY.format(value["id"]), value, expected_revision=expected_revision)
        return {**value, "revision": revision}

    def set_remaining_modifications(self, project_id: str, remaining: int) -> dict:
        """Write the quota tracker's remaining count back onto the project."""
        project = self.get_project(project_id)
        remaining = max(0, min(int(remaining), project["total_modification_count"]))
        if project.get("remaining_modification_count") == remaining:
            return project
        previous = project.get("remaining_modification_count")
        project["remaining_modification_count"] = remaining
        project["updated_at"] = utc_now_iso()
        saved = self.save_project(project, expected_revision=project["revision"])
        logger.info(
            "Remaining modifications %s -> %s", previous, remaining,
            extra={"project_id": project_id, "event_type": "project.quota_sync"},
        )
        return saved

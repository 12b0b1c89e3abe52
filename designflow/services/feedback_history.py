"""
Feedback History Ledger — append-only snapshots of client feedback.

Every feedback item owns a history:

    feedback_history:<feedback_id>
        {feedback_id, project_id, current_version, total_changes,
         versions: [{version, feedback, changes, created_at, created_by}, ...]}

    project_feedback:<project_id>:<feedback_id> → feedback_id   (listing index)

Invariants:
    - versions[i]["version"] == i + 1 and current_version == len(versions)
    - history never shrinks; a rollback appends a copy of an earlier snapshot
    - an update or rollback that changes nothing appends nothing

Values are compared structurally (canonical JSON), so nested lists and dicts
that are equal by content never count as modified.  ``None`` and an absent
key are the same thing.  Bookkeeping fields never show up as changes.
"""

from __future__ import annotations

import json
import logging

from designflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from designflow.services.events import EventSink, emit
from designflow.services.revision_store import RevisionStore
from designflow.utils.helpers import new_id, utc_now_iso

logger = logging.getLogger(__name__)

HISTORY_KEY = "feedback_history:{}"
HISTORY_PREFIX = "feedback_history:"
PROJECT_INDEX_KEY = "project_feedback:{}:{}"
PROJECT_INDEX_PREFIX = "project_feedback:{}:"

CHANGE_ADDED = "added"
CHANGE_MODIFIED = "modified"
CHANGE_REMOVED = "removed"

# Maintained by the ledger itself; never diffed, never taken from updates
BOOKKEEPING_FIELDS = frozenset({"version", "updated_at"})
# The project index is keyed by project_id, so it is fixed at creation
PROTECTED_UPDATE_FIELDS = frozenset({"id", "project_id"}) | BOOKKEEPING_FIELDS

FIELD_DISPLAY_NAMES = {
    "id": "ID",
    "project_id": "Project",
    "report_id": "Report",
    "content": "Content",
    "content_html": "Content (HTML)",
    "attachments": "Attachments",
    "annotations": "Annotations",
    "is_official": "Official feedback",
    "priority": "Priority",
    "category": "Category",
    "status": "Status",
    "submitted_at": "Submitted at",
    "updated_at": "Updated at",
    "resolved_at": "Resolved at",
    "client_id": "Client",
    "version": "Version",
    "parent_feedback_id": "Parent feedback",
    "revision_request_count": "Revision requests",
}

_SUMMARY_LABELS = (
    (CHANGE_ADDED, "Added"),
    (CHANGE_MODIFIED, "Modified"),
    (CHANGE_REMOVED, "Removed"),
)


def _canonical(value) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _same(a, b) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return _canonical(a) == _canonical(b)


def _change(field: str, old, new) -> dict:
    if old is None:
        change_type = CHANGE_ADDED
    elif new is None:
        change_type = CHANGE_REMOVED
    else:
        change_type = CHANGE_MODIFIED
    return {"field": field, "old_value": old, "new_value": new, "change_type": change_type}


def diff_snapshots(old: dict, new: dict) -> list[dict]:
    """Field-level changes from ``old`` to ``new`` over the union of keys."""
    fields = list(old)
    fields.extend(k for k in new if k not in old)

    changes = []
    for name in fields:
        if name in BOOKKEEPING_FIELDS:
            continue
        before, after = old.get(name), new.get(name)
        if not _same(before, after):
            changes.append(_change(name, before, after))
    return changes


def display_name(field: str) -> str:
    return FIELD_DISPLAY_NAMES.get(field, field)


class FeedbackHistoryLedger:
    """Versioned feedback snapshots on top of a borrowed revision store."""

    def __init__(self, store: RevisionStore, on_event: EventSink | None = None):
        self.store = store
        self.on_event = on_event

    # ── Internal ──────────────────────────────────────────────────────

    def _load(self, feedback_id: str) -> tuple[dict, int]:
        history, revision = self.store.get_with_revision(HISTORY_KEY.format(feedback_id))
        if history is None:
            raise NotFoundError(resource="Feedback", resource_id=feedback_id)
        return history, revision

    @staticmethod
    def _snapshot(history: dict, version: int) -> dict:
        if not isinstance(version, int) or not 1 <= version <= len(history["versions"]):
            raise NotFoundError(resource="FeedbackVersion", resource_id=f"{history['feedback_id']}@{version}")
        return history["versions"][version - 1]

    def _append(self, history: dict, revision: int, snapshot: dict, changes: list[dict],
                created_by: str | None) -> dict:
        number = len(history["versions"]) + 1
        snapshot["version"] = number
        history["versions"].append({
            "version": number,
            "feedback": snapshot,
            "changes": changes,
            "created_at": snapshot["updated_at"],
            "created_by": created_by or "system",
        })
        history["current_version"] = number
        history["total_changes"] = history.get("total_changes", 0) + len(changes)
        self.store.put(HISTORY_KEY.format(history["feedback_id"]), history, expected_revision=revision)
        return history

    def _emit(self, action: str, history: dict, actor: str | None, changes: list[dict]):
        emit(
            self.on_event,
            entity_type="feedback",
            entity_id=history["feedback_id"],
            action=action,
            actor=actor,
            project_id=history.get("project_id"),
            diff={c["field"]: {"old": c["old_value"], "new": c["new_value"]} for c in changes},
        )

    # ── Commands ──────────────────────────────────────────────────────

    def create_feedback(self, feedback: dict, created_by: str | None = None) -> dict:
        """Start a history at version 1 with no changes.

        Raises:
            ValidationError: ``feedback`` is not a mapping.
            ConflictError: a history already exists for the feedback id.
        """
        if not isinstance(feedback, dict):
            raise ValidationError("feedback must be an object")

        feedback_id = str(feedback.get("id") or new_id())
        if self.store.get(HISTORY_KEY.format(feedback_id)) is not None:
            raise ConflictError("Feedback", "id", feedback_id)

        now = utc_now_iso()
        snapshot = {k: v for k, v in feedback.items() if v is not None}
        snapshot["id"] = feedback_id
        snapshot.setdefault("submitted_at", now)
        snapshot["version"] = 1
        snapshot["updated_at"] = now

        project_id = snapshot.get("project_id")
        author = created_by or snapshot.get("client_id") or "system"
        history = {
            "feedback_id": feedback_id,
            "project_id": project_id,
            "versions": [{
                "version": 1,
                "feedback": snapshot,
                "changes": [],
                "created_at": snapshot["submitted_at"],
                "created_by": author,
            }],
            "current_version": 1,
            "total_changes": 0,
        }

        if project_id:
            self.store.put(PROJECT_INDEX_KEY.format(project_id, feedback_id), feedback_id)
        self.store.put(HISTORY_KEY.format(feedback_id), history, expected_revision=0)

        logger.info("Feedback history started",
                    extra={"project_id": project_id, "feedback_id": feedback_id,
                           "event_type": "feedback.create"})
        self._emit("feedback.create", history, author, [])
        return history

    def update_feedback(self, feedback_id: str, updates: dict, updated_by: str | None = None) -> dict:
        """Apply ``updates`` and append a version when anything actually changed.

        ``id``, ``project_id``, ``version`` and ``updated_at`` in ``updates``
        are ignored.  A
        key set to None is removed from the snapshot.
        """
        if not isinstance(updates, dict):
            raise ValidationError("updates must be an object")
        history, revision = self._load(feedback_id)
        current = history["versions"][-1]["feedback"]

        changes = []
        for name, new in updates.items():
            if name in PROTECTED_UPDATE_FIELDS:
                continue
            old = current.get(name)
            if not _same(old, new):
                changes.append(_change(name, old, new))
        if not changes:
            logger.debug("No-op feedback update ignored", extra={"feedback_id": feedback_id})
            return history

        snapshot = dict(current)
        for c in changes:
            if c["new_value"] is None:
                snapshot.pop(c["field"], None)
            else:
                snapshot[c["field"]] = c["new_value"]
        snapshot["updated_at"] = utc_now_iso()

        history = self._append(history, revision, snapshot, changes, updated_by)
        logger.info("Feedback updated to v%d (%d change(s))", history["current_version"], len(changes),
                    extra={"project_id": history.get("project_id"), "feedback_id": feedback_id,
                           "event_type": "feedback.update"})
        self._emit("feedback.update", history, updated_by, changes)
        return history

    def rollback_to_version(self, feedback_id: str, target_version: int,
                            rolled_back_by: str | None = None) -> dict:
        """Append a copy of ``target_version``.  Rolling back to an equivalent
        snapshot leaves the history untouched."""
        history, revision = self._load(feedback_id)
        target = self._snapshot(history, target_version)["feedback"]
        current = history["versions"][-1]["feedback"]

        changes = diff_snapshots(current, target)
        if not changes:
            return history

        snapshot = dict(target)
        snapshot["id"] = current["id"]
        snapshot["updated_at"] = utc_now_iso()

        history = self._append(history, revision, snapshot, changes, rolled_back_by)
        logger.info("Feedback rolled back to v%d as v%d", target_version, history["current_version"],
                    extra={"project_id": history.get("project_id"), "feedback_id": feedback_id,
                           "event_type": "feedback.rollback"})
        self._emit("feedback.rollback", history, rolled_back_by, changes)
        return history

    # ── Queries ───────────────────────────────────────────────────────

    def compare_versions(self, feedback_id: str, version1: int, version2: int) -> list[dict]:
        history, _ = self._load(feedback_id)
        a = self._snapshot(history, version1)["feedback"]
        b = self._snapshot(history, version2)["feedback"]
        return diff_snapshots(a, b)

    @staticmethod
    def get_changes_summary(changes: list[dict]) -> str:
        """Render changes as ``"Added: X / Modified: Y, Z / Removed: W"``."""
        groups: dict[str, list[str]] = {}
        for c in changes:
            names = groups.setdefault(c["change_type"], [])
            label = display_name(c["field"])
            if label not in names:
                names.append(label)
        parts = [f"{title}: {', '.join(groups[kind])}" for kind, title in _SUMMARY_LABELS if kind in groups]
        return " / ".join(parts)

    def get_history(self, feedback_id: str) -> dict:
        history, _ = self._load(feedback_id)
        return history

    def get_version(self, feedback_id: str, version: int) -> dict:
        history, _ = self._load(feedback_id)
        return self._snapshot(history, version)

    def get_current_feedback(self, feedback_id: str) -> dict:
        history, _ = self._load(feedback_id)
        return history["versions"][-1]["feedback"]

    def list_for_project(self, project_id: str) -> list[dict]:
        histories = []
        for key in self.store.list_keys_by_prefix(PROJECT_INDEX_PREFIX.format(project_id)):
            feedback_id = self.store.get(key)
            history = self.store.get(HISTORY_KEY.format(feedback_id))
            if history is not None:
                histories.append(history)
        histories.sort(key=lambda h: h["versions"][0]["created_at"])
        return histories

    def has_feedback(self, project_id: str) -> bool:
        return bool(self.store.list_keys_by_prefix(PROJECT_INDEX_PREFIX.format(project_id)))

    def get_statistics(self, project_id: str | None = None) -> dict:
        if project_id is None:
            histories = self.store.list_values_by_prefix(HISTORY_PREFIX)
        else:
            histories = self.list_for_project(project_id)

        total_versions = sum(len(h["versions"]) for h in histories)
        most_versioned = max(histories, key=lambda h: len(h["versions"]), default=None)
        return {
            "total_feedbacks": len(histories),
            "total_versions": total_versions,
            "total_changes": sum(h.get("total_changes", 0) for h in histories),
            "average_versions_per_feedback": round(total_versions / len(histories), 2) if histories else 0,
            "most_versioned_feedback": most_versioned["feedback_id"] if most_versioned else None,
        }

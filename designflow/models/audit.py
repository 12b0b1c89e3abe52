"""
DesignFlow
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import datetime, timezone

from designflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "project", "design_version", "feedback", "modification_request",
}

AUDIT_ACTIONS = {
    # Project lifecycle
    "project.create",
    "project.transition",
    # Design versions
    "design_version.create",
    "design_version.approve",
    "design_version.set_current",
    "design_version.delete",
    # Feedback history
    "feedback.create",
    "feedback.update",
    "feedback.rollback",
    # Modification requests
    "modification_request.create",
    "modification_request.approve",
    "modification_request.reject",
    "modification_request.start",
    "modification_request.complete",
    "modification_request.reprice",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action.  ``diff_json`` carries the old→new snapshot
    for field-level changes.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(64), nullable=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="project | design_version | feedback | modification_request",
    )
    entity_id = db.Column(db.String(64), nullable=False)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="project.transition | design_version.approve | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str | None = "system",
    project_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row and commit it.

    Store writes are committed one by one, so the audit row follows the
    same per-operation commit instead of riding on an outer transaction.
    """
    log = AuditLog(
        project_id=str(project_id) if project_id is not None else None,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.commit()
    return log


def list_audit(project_id: str, *, entity_type: str | None = None, limit: int = 200) -> list[dict]:
    """Return audit rows for a project, newest first."""
    q = AuditLog.query.filter_by(project_id=str(project_id))
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit)
    return [row.to_dict() for row in q.all()]

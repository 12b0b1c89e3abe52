"""
DesignFlow
Key-value storage model backing the SQL revision store.

Models:
    - StoreEntry: one row per store key, JSON value plus a monotonically
      increasing revision used for optimistic concurrency.
"""

from datetime import datetime, timezone

from designflow.models import db


class StoreEntry(db.Model):
    """
    Generic keyed record.

    Keys are namespaced strings (``project:<id>``, ``project_versions:<id>``,
    ``feedback_history:<id>`` …) so that prefix listing doubles as a
    per-entity index.  ``revision`` starts at 1 and is bumped on every write.
    """

    __tablename__ = "store_entries"

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.JSON, nullable=False)
    revision = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "revision": self.revision,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<StoreEntry {self.key} r{self.revision}>"

"""
Revision Store — keyed persistence borrowed by every lifecycle component.

The engine only needs three primitives:
    get(key) -> value | None
    put(key, value) -> revision
    list_keys_by_prefix(prefix) -> [key, ...]

Each value carries a store revision (1 on first write, +1 per write).
Passing ``expected_revision`` to ``put`` turns it into a compare-and-set:
the write only lands when the stored revision still matches, otherwise
StaleRevisionError is raised and nothing is written.  ``expected_revision=0``
means "the key must not exist yet".

No multi-key transactions are assumed: every logical engine operation is a
sequence of single-key writes that can be re-run from scratch.

Backends:
    InMemoryRevisionStore — dict + lock, for unit tests and scripts
    SqlRevisionStore      — StoreEntry table through Flask-SQLAlchemy

Usage:
    from designflow.services.revision_store import InMemoryRevisionStore

    store = InMemoryRevisionStore()
    rev = store.put("project:p1", {"status": "creation_pending"})
    value, rev = store.get_with_revision("project:p1")
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError

from designflow.core.exceptions import StaleRevisionError
from designflow.models import db
from designflow.models.store import StoreEntry

logger = logging.getLogger(__name__)


def _normalise(value: Any) -> Any:
    """Round-trip through JSON so stored values never alias caller objects."""
    return json.loads(json.dumps(value))


class RevisionStore(ABC):
    """Abstract keyed store with optimistic revisions."""

    @abstractmethod
    def get_with_revision(self, key: str) -> tuple[Any | None, int]:
        """Return ``(value, revision)``; ``(None, 0)`` when the key is absent."""

    @abstractmethod
    def put(self, key: str, value: Any, *, expected_revision: int | None = None) -> int:
        """Write ``value`` under ``key`` and return the new revision."""

    @abstractmethod
    def list_keys_by_prefix(self, prefix: str) -> list[str]:
        """Return every key starting with ``prefix``, sorted."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``; False when it did not exist."""

    def get(self, key: str) -> Any | None:
        value, _ = self.get_with_revision(key)
        return value

    def list_values_by_prefix(self, prefix: str) -> list[Any]:
        values = []
        for key in self.list_keys_by_prefix(prefix):
            value = self.get(key)
            if value is not None:
                values.append(value)
        return values


class InMemoryRevisionStore(RevisionStore):
    """Process-local store.  Values are kept as JSON text."""

    def __init__(self):
        self._data: dict[str, tuple[int, str]] = {}
        self._lock = threading.Lock()

    def get_with_revision(self, key):
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None, 0
        revision, raw = entry
        return json.loads(raw), revision

    def put(self, key, value, *, expected_revision=None):
        raw = json.dumps(value)
        with self._lock:
            current = self._data.get(key)
            actual = current[0] if current else 0
            if expected_revision is not None and expected_revision != actual:
                raise StaleRevisionError(key, expected_revision, actual)
            self._data[key] = (actual + 1, raw)
            return actual + 1

    def list_keys_by_prefix(self, prefix):
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def delete(self, key):
        with self._lock:
            return self._data.pop(key, None) is not None


class SqlRevisionStore(RevisionStore):
    """Store backed by the ``store_entries`` table.

    Every put commits on its own.  Conditional writes are enforced in the
    UPDATE itself (``WHERE revision = :actual``) so two processes racing on
    the same key cannot both succeed.
    """

    def get_with_revision(self, key):
        row = db.session.get(StoreEntry, key)
        if row is None:
            return None, 0
        return copy.deepcopy(row.value), row.revision

    def put(self, key, value, *, expected_revision=None):
        payload = _normalise(value)
        row = db.session.get(StoreEntry, key)
        actual = row.revision if row is not None else 0
        if expected_revision is not None and expected_revision != actual:
            raise StaleRevisionError(key, expected_revision, actual)

        if row is None:
            db.session.add(StoreEntry(key=key, value=payload, revision=1))
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                logger.warning("Concurrent insert lost on store key %s", key)
                raise StaleRevisionError(key, expected_revision, None)
            return 1

        updated = (
            db.session.query(StoreEntry)
            .filter(StoreEntry.key == key, StoreEntry.revision == actual)
            .update(
                {
                    StoreEntry.value: payload,
                    StoreEntry.revision: actual + 1,
                    StoreEntry.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            db.session.rollback()
            raise StaleRevisionError(key, expected_revision if expected_revision is not None else actual, None)
        db.session.commit()
        return actual + 1

    def list_keys_by_prefix(self, prefix):
        rows = (
            db.session.query(StoreEntry.key)
            .filter(StoreEntry.key.startswith(prefix, autoescape=True))
            .order_by(StoreEntry.key)
            .all()
        )
        return [r[0] for r in rows]

    def delete(self, key):
        row = db.session.get(StoreEntry, key)
        if row is None:
            return False
        db.session.delete(row)
        db.session.commit()
        return True

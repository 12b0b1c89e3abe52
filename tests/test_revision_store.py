"""
Revision Store Tests:
  - revision numbering and compare-and-set on both backends
  - prefix listing and delete
  - stored values never alias caller objects
"""

import pytest

from designflow.core.exceptions import ConflictError, StaleRevisionError
from designflow.models import db
from designflow.models.store import StoreEntry
from designflow.services.revision_store import InMemoryRevisionStore, SqlRevisionStore


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryRevisionStore()
    return SqlRevisionStore()


class TestRevisions:

    def test_absent_key(self, store):
        assert store.get("project:missing") is None
        assert store.get_with_revision("project:missing") == (None, 0)

    def test_revision_starts_at_one_and_increments(self, store):
        assert store.put("project:p1", {"status": "creation_pending"}) == 1
        assert store.put("project:p1", {"status": "review_requested"}) == 2
        value, rev = store.get_with_revision("project:p1")
        assert value == {"status": "review_requested"}
        assert rev == 2

    def test_expected_revision_zero_means_create_only(self, store):
        store.put("project:p1", {"n": 1}, expected_revision=0)
        with pytest.raises(StaleRevisionError):
            store.put("project:p1", {"n": 2}, expected_revision=0)
        assert store.get("project:p1") == {"n": 1}

    def test_stale_write_is_rejected_and_nothing_changes(self, store):
        store.put("k", {"n": 1})
        store.put("k", {"n": 2}, expected_revision=1)
        with pytest.raises(StaleRevisionError) as exc:
            store.put("k", {"n": 3}, expected_revision=1)
        assert exc.value.expected == 1
        assert store.get_with_revision("k") == ({"n": 2}, 2)

    def test_stale_is_a_conflict(self, store):
        store.put("k", 1)
        with pytest.raises(ConflictError):
            store.put("k", 2, expected_revision=5)

    def test_scalar_values(self, store):
        store.put("version_project:v1", "p1")
        assert store.get("version_project:v1") == "p1"


class TestListingAndDelete:

    def test_list_keys_by_prefix_sorted(self, store):
        store.put("modification:p1:b", {})
        store.put("modification:p1:a", {})
        store.put("modification:p2:a", {})
        assert store.list_keys_by_prefix("modification:p1:") == ["modification:p1:a", "modification:p1:b"]

    def test_prefix_with_sql_wildcards_is_literal(self, store):
        store.put("feedback_history:a_b", {})
        store.put("feedback_history:axb", {})
        assert store.list_keys_by_prefix("feedback_history:a_") == ["feedback_history:a_b"]

    def test_list_values_by_prefix(self, store):
        store.put("x:1", {"n": 1})
        store.put("x:2", {"n": 2})
        assert store.list_values_by_prefix("x:") == [{"n": 1}, {"n": 2}]

    def test_delete(self, store):
        store.put("x:1", {"n": 1})
        assert store.delete("x:1") is True
        assert store.delete("x:1") is False
        assert store.get("x:1") is None


class TestIsolation:

    def test_mutating_returned_value_does_not_touch_store(self, store):
        store.put("k", {"files": [1, 2]})
        value = store.get("k")
        value["files"].append(3)
        assert store.get("k") == {"files": [1, 2]}

    def test_mutating_written_value_does_not_touch_store(self, store):
        payload = {"files": [1]}
        store.put("k", payload)
        payload["files"].append(2)
        assert store.get("k") == {"files": [1]}


def test_sql_store_persists_rows():
    store = SqlRevisionStore()
    store.put("project:p1", {"status": "creation_pending"})
    store.put("project:p1", {"status": "review_requested"}, expected_revision=1)
    row = db.session.get(StoreEntry, "project:p1")
    assert row.revision == 2
    assert row.to_dict()["value"] == {"status": "review_requested"}

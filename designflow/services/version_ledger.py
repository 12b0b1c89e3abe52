"""
Design Version Ledger — numbered, file-bearing design drafts per project.

Storage layout (all through the borrowed RevisionStore):
    project_versions:<project_id>  → {last_version_number, versions: [...]}
    version_project:<version_id>   → project_id       reverse index

Keeping the project's versions in one value makes "exactly one current
version" a single-key write: the is_current flip for the old and the new
current version lands together or not at all.  Every mutation is a
compare-and-set on the ledger revision, so two concurrent creates cannot
hand out the same version number.  ``last_version_number`` is a high-water
mark, so the number of a deleted version is never handed out again.

The reverse index is written before the ledger.  If a crash happens in
between, the orphan index entry points at a project whose ledger does not
contain the id, which every reader treats as "not found".
"""

from __future__ import annotations

import logging

from designflow.core.exceptions import EmptyFileSetError, NotFoundError, ValidationError
from designflow.services.events import EventSink, emit
from designflow.services.revision_store import RevisionStore
from designflow.utils.helpers import new_id, utc_now_iso

logger = logging.getLogger(__name__)

VERSIONS_KEY = "project_versions:{}"
VERSION_INDEX_KEY = "version_project:{}"


def _file_extension(name: str) -> str:
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def _build_design_file(project_id: str, version_id: str, version_number: int, index: int,
                       upload: dict, uploaded_at: str) -> dict:
    if not isinstance(upload, dict):
        raise ValidationError("Each file must be an object", details={"index": index})
    original = upload.get("original_filename") or upload.get("name")
    if not original:
        raise ValidationError("Each file needs a name", details={"index": index})

    ext = _file_extension(original)
    filename = f"{project_id}_v{version_number}_{index + 1}"
    if ext:
        filename = f"{filename}.{ext}"
    return {
        "id": new_id(),
        "version_id": version_id,
        "filename": filename,
        "original_filename": original,
        "file_type": upload.get("file_type") or upload.get("type") or "",
        "file_size": int(upload.get("file_size") or upload.get("size") or 0),
        "file_url": upload.get("file_url") or upload.get("url") or "",
        "is_primary": index == 0,
        "uploaded_at": uploaded_at,
    }


class VersionLedger:
    """Numbered design versions with a single current pointer per project."""

    def __init__(self, store: RevisionStore, on_event: EventSink | None = None):
        self.store = store
        self.on_event = on_event

    # ── Internal ──────────────────────────────────────────────────────

    def _load_state(self, project_id: str) -> tuple[dict, int]:
        state, revision = self.store.get_with_revision(VERSIONS_KEY.format(project_id))
        return state or {"last_version_number": 0, "versions": []}, revision

    def _load(self, project_id: str) -> tuple[list[dict], int]:
        state, revision = self._load_state(project_id)
        return state["versions"], revision

    def _save(self, project_id: str, state: dict, revision: int) -> None:
        self.store.put(VERSIONS_KEY.format(project_id), state, expected_revision=revision)

    def _locate(self, version_id: str):
        """Return ``(project_id, state, revision, index)`` or None."""
        project_id = self.store.get(VERSION_INDEX_KEY.format(version_id))
        if project_id is None:
            return None
        state, revision = self._load_state(project_id)
        for i, v in enumerate(state["versions"]):
            if v["id"] == version_id:
                return project_id, state, revision, i
        return None

    def _require(self, version_id: str):
        located = self._locate(version_id)
        if located is None:
            raise NotFoundError(resource="DesignVersion", resource_id=version_id)
        return located

    def _emit(self, action: str, version: dict, actor: str | None, diff: dict | None = None):
        emit(
            self.on_event,
            entity_type="design_version",
            entity_id=version["id"],
            action=action,
            actor=actor,
            project_id=version["project_id"],
            diff=diff,
        )

    # ── Commands ──────────────────────────────────────────────────────

    def create_version(self, project_id: str, files: list[dict], created_by: str,
                       title: str | None = None, description: str | None = None) -> dict:
        """Append version N+1, make it current, and return it.

        Raises:
            EmptyFileSetError: ``files`` is empty.
            StaleRevisionError: another writer changed the ledger meanwhile.
        """
        if not files:
            raise EmptyFileSetError(project_id)

        state, revision = self._load_state(project_id)
        versions = state["versions"]
        version_number = max(
            [state.get("last_version_number", 0)] + [v["version_number"] for v in versions]
        ) + 1
        version_id = new_id()
        now = utc_now_iso()

        design_files = [
            _build_design_file(project_id, version_id, version_number, i, f, now)
            for i, f in enumerate(files)
        ]
        version = {
            "id": version_id,
            "project_id": project_id,
            "version_number": version_number,
            "title": title or f"Draft v{version_number}",
            "description": description,
            "files": design_files,
            "thumbnail_url": design_files[0]["file_url"] or None,
            "is_current": True,
            "is_approved": False,
            "approved_by": None,
            "approved_at": None,
            "created_at": now,
            "created_by": created_by,
        }

        updated = [{**v, "is_current": False} for v in versions]
        updated.append(version)

        self.store.put(VERSION_INDEX_KEY.format(version_id), project_id)
        self._save(project_id, {"last_version_number": version_number, "versions": updated}, revision)

        logger.info(
            "Design version v%d created with %d file(s)", version_number, len(design_files),
            extra={"project_id": project_id, "version_id": version_id, "event_type": "design_version.create"},
        )
        self._emit("design_version.create", version, created_by,
                   {"version_number": {"old": None, "new": version_number}})
        return version

    def approve_version(self, version_id: str, approved_by: str | None = None) -> dict:
        """Mark a version approved.  Approving twice is a no-op."""
        project_id, state, revision, idx = self._require(version_id)
        version = state["versions"][idx]
        if version["is_approved"]:
            return version

        version["is_approved"] = True
        version["approved_by"] = approved_by
        version["approved_at"] = utc_now_iso()
        self._save(project_id, state, revision)

        logger.info("Design version approved",
                    extra={"project_id": project_id, "version_id": version_id,
                           "event_type": "design_version.approve"})
        self._emit("design_version.approve", version, approved_by,
                   {"is_approved": {"old": False, "new": True}})
        return version

    def set_current_version(self, version_id: str, actor: str | None = None) -> dict:
        project_id, state, revision, idx = self._require(version_id)
        versions = state["versions"]
        previous = next((v for v in versions if v["is_current"]), None)
        if previous is not None and previous["id"] == version_id:
            return versions[idx]

        for i, v in enumerate(versions):
            v["is_current"] = i == idx
        self._save(project_id, state, revision)

        logger.info("Current design version set to v%d", versions[idx]["version_number"],
                    extra={"project_id": project_id, "version_id": version_id,
                           "event_type": "design_version.set_current"})
        self._emit("design_version.set_current", versions[idx], actor,
                   {"current_version_id": {"old": previous["id"] if previous else None, "new": version_id}})
        return versions[idx]

    def delete_version(self, version_id: str, actor: str | None = None) -> bool:
        """Remove a version.  Returns False when the id is unknown.

        Deleting the current version promotes the remaining version with the
        highest number.  Version numbers are never reused.
        """
        located = self._locate(version_id)
        if located is None:
            return False
        project_id, state, revision, idx = located
        versions = state["versions"]

        removed = versions.pop(idx)
        promoted = None
        if removed["is_current"] and versions:
            promoted = max(versions, key=lambda v: v["version_number"])
            promoted["is_current"] = True

        self._save(project_id, state, revision)
        self.store.delete(VERSION_INDEX_KEY.format(version_id))

        logger.info("Design version v%d deleted", removed["version_number"],
                    extra={"project_id": project_id, "version_id": version_id,
                           "event_type": "design_version.delete"})
        diff = {"version_number": {"old": removed["version_number"], "new": None}}
        if promoted is not None:
            diff["current_version_id"] = {"old": version_id, "new": promoted["id"]}
        self._emit("design_version.delete", removed, actor, diff)
        return True

    # ── Queries ───────────────────────────────────────────────────────

    def get_version(self, version_id: str) -> dict:
        _, state, _, idx = self._require(version_id)
        return state["versions"][idx]

    def list_versions(self, project_id: str) -> list[dict]:
        versions, _ = self._load(project_id)
        return sorted(versions, key=lambda v: v["version_number"])

    def get_current_version(self, project_id: str) -> dict | None:
        versions, _ = self._load(project_id)
        current = next((v for v in versions if v["is_current"]), None)
        if current is None and versions:
            current = max(versions, key=lambda v: v["version_number"])
        return current

    def has_versions(self, project_id: str) -> bool:
        versions, _ = self._load(project_id)
        return bool(versions)

    def has_approved_version(self, project_id: str) -> bool:
        versions, _ = self._load(project_id)
        return any(v["is_approved"] for v in versions)

    def prepare_comparison(self, version_a_id: str, version_b_id: str) -> dict:
        return {
            "version_a": self.get_version(version_a_id),
            "version_b": self.get_version(version_b_id),
            "comparison_mode": "side-by-side",
        }

    def get_version_stats(self, project_id: str) -> dict:
        versions = self.list_versions(project_id)
        current = next((v for v in versions if v["is_current"]), None)
        return {
            "total_versions": len(versions),
            "approved_versions": sum(1 for v in versions if v["is_approved"]),
            "current_version": current["version_number"] if current else None,
            "latest_version": versions[-1]["version_number"] if versions else None,
            "total_files": sum(len(v["files"]) for v in versions),
        }

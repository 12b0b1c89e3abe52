"""
Engine wiring — builds the lifecycle components around one revision store.

    engine = build_engine(InMemoryRevisionStore())
    project = engine.projects.create_project(client_id="c1", designer_id="d1")
    engine.workflow.request_transition(project["id"], "review_requested", "designer")

Inside the Flask app the engine is created once by ``init_engine`` and kept
in ``app.extensions``; blueprints fetch it with ``get_engine()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_app_context

from designflow.models import db
from designflow.models.audit import write_audit
from designflow.services.events import EventSink
from designflow.services.feedback_history import FeedbackHistoryLedger
from designflow.services.modification_quota import DEFAULT_UNIT_FEE
from designflow.services.modification_service import ModificationService
from designflow.services.project_service import ProjectService
from designflow.services.revision_store import (
    InMemoryRevisionStore,
    RevisionStore,
    SqlRevisionStore,
)
from designflow.services.version_ledger import VersionLedger
from designflow.services.workflow import WorkflowController

logger = logging.getLogger(__name__)

EXTENSION_KEY = "designflow.engine"


@dataclass
class LifecycleEngine:
    store: RevisionStore
    projects: ProjectService
    versions: VersionLedger
    feedback: FeedbackHistoryLedger
    modifications: ModificationService
    workflow: WorkflowController


def audit_event_sink(**event) -> None:
    """Persist a lifecycle event as an AuditLog row when an app context exists."""
    if not has_app_context():
        logger.debug("Audit skipped outside app context: %s", event.get("action"))
        return
    try:
        write_audit(**event)
    except Exception:
        db.session.rollback()
        raise


def build_engine(store: RevisionStore, *, on_event: EventSink | None = None,
                 default_modification_count: int = 3,
                 unit_fee: int = DEFAULT_UNIT_FEE) -> LifecycleEngine:
    projects = ProjectService(store, default_modification_count=default_modification_count,
                              on_event=on_event)
    versions = VersionLedger(store, on_event=on_event)
    feedback = FeedbackHistoryLedger(store, on_event=on_event)
    modifications = ModificationService(store, projects, feedback, unit_fee=unit_fee, on_event=on_event)
    workflow = WorkflowController(
        projects,
        versions=versions,
        feedback=feedback,
        modifications=modifications,
        on_event=on_event,
    )
    return LifecycleEngine(
        store=store,
        projects=projects,
        versions=versions,
        feedback=feedback,
        modifications=modifications,
        workflow=workflow,
    )


def init_engine(app) -> LifecycleEngine:
    backend = app.config.get("REVISION_STORE", "sql")
    if backend == "memory":
        store = InMemoryRevisionStore()
    elif backend == "sql":
        store = SqlRevisionStore()
    else:
        raise RuntimeError(f"Unknown REVISION_STORE backend '{backend}' (expected 'sql' or 'memory')")

    engine = build_engine(
        store,
        on_event=audit_event_sink,
        default_modification_count=app.config.get("DEFAULT_MODIFICATION_COUNT", 3),
        unit_fee=app.config.get("ADDITIONAL_MODIFICATION_FEE", DEFAULT_UNIT_FEE),
    )
    app.extensions[EXTENSION_KEY] = engine
    logger.info("Lifecycle engine ready (store=%s)", backend)
    return engine


def get_engine() -> LifecycleEngine:
    return current_app.extensions[EXTENSION_KEY]

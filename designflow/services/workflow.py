"""
Workflow Controller — the only way a project changes status.

Every request goes through the same three gates, in order:
  1. the (current status, target) edge must be declared in WORKFLOW_TRANSITIONS
  2. the acting role must match the edge's required role
  3. every validation rule of the edge must hold; all violations are reported
     together

A rejected request leaves the project untouched.  An accepted one sets the
new status, stamps the status timestamp, maintains completion metadata,
persists with an optimistic revision check and notifies listeners.

Validation facts come from the injected ledgers when available:
    has_draft_files         ← VersionLedger (any version exists)
    has_final_deliverables  ← deliverables on the request or project, or an
                              approved version
    has_feedback            ← FeedbackHistoryLedger (any feedback on project)
    remaining_modifications ← ModificationService quota
The caller's context bag only fills the facts no ledger provides.

Usage:
    from designflow.services.workflow import WorkflowController

    controller = WorkflowController(projects, versions=ledger)
    project = controller.request_transition(pid, "review_requested", "designer")
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Callable

from designflow.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    StaleRevisionError,
    ValidationError,
    ValidationFailedError,
)
from designflow.models.workflow import (
    ACTING_ROLES,
    BASE_PROGRESS,
    COMPLETION_STATUSES,
    PROJECT_STATUSES,
    STATUS_DISPLAY_INFO,
    TRANSITIONS_BY_EDGE,
    VALIDATION_RULE_MESSAGES,
    WORKFLOW_TRANSITIONS,
    ValidationContext,
    WorkflowTransition,
)
from designflow.services.events import EventSink, emit
from designflow.services.project_service import ProjectService
from designflow.utils.helpers import utc_now_iso

logger = logging.getLogger(__name__)

TransitionListener = Callable[[dict, str, WorkflowTransition, "str | None"], object]


def _require_role(acting_role: str) -> None:
    if acting_role not in ACTING_ROLES:
        raise ValidationError(
            f"Unknown acting role '{acting_role}'",
            details={"acting_role": f"must be one of {', '.join(sorted(ACTING_ROLES))}"},
        )


def _require_status(status: str) -> None:
    if status not in PROJECT_STATUSES:
        raise ValidationError(f"Unknown project status '{status}'")


# ── Pure queries ─────────────────────────────────────────────────────────────

def get_transition(from_status: str, to_status: str) -> WorkflowTransition | None:
    return TRANSITIONS_BY_EDGE.get((from_status, to_status))


def available_transitions(status: str, acting_role: str) -> list[WorkflowTransition]:
    """Declared transitions out of ``status`` that ``acting_role`` may perform."""
    _require_status(status)
    _require_role(acting_role)
    return [t for t in WORKFLOW_TRANSITIONS if t.from_status == status and t.allows(acting_role)]


def available_actions(status: str, acting_role: str) -> list[dict]:
    return [t.to_action() for t in available_transitions(status, acting_role)]


def _custom_number(data: dict, snake: str, camel: str) -> float:
    raw = data[snake] if snake in data else data.get(camel)
    if isinstance(raw, bool):
        return 0.0
    try:
        return float(raw or 0)
    except (TypeError, ValueError):
        return 0.0


def calculate_progress(status: str, custom_data: dict | None = None) -> int:
    """Completion percentage for a status, refined by optional milestone data.

    custom_data keys:
        completed_milestones / total_milestones  (in_progress)
        feedback_rounds                          (feedback_period)
    camelCase spellings (milestonesCompleted, totalMilestones, feedbackRounds)
    are accepted too; values that are not numbers count as 0.
    """
    _require_status(status)
    custom_data = custom_data or {}
    progress = float(BASE_PROGRESS[status])

    if status == "in_progress":
        total = _custom_number(custom_data, "total_milestones", "totalMilestones")
        if total > 0:
            completed = _custom_number(custom_data, "completed_milestones", "milestonesCompleted")
            progress = 30 + 30 * (completed / total)
    elif status == "feedback_period":
        rounds = _custom_number(custom_data, "feedback_rounds", "feedbackRounds")
        progress += min(rounds * 5, 15)

    return int(round(max(0.0, min(100.0, progress))))


def status_display_info(status: str) -> dict:
    _require_status(status)
    return {"status": status, **STATUS_DISPLAY_INFO[status]}


# ── Controller ───────────────────────────────────────────────────────────────

class WorkflowController:
    """Applies role-gated, rule-checked status transitions to projects."""

    def __init__(self, projects: ProjectService, *, versions=None, feedback=None,
                 modifications=None, on_event: EventSink | None = None):
        self.projects = projects
        self.versions = versions
        self.feedback = feedback
        self.modifications = modifications
        self.on_event = on_event
        self._listeners: list[TransitionListener] = []
        # Entries vanish once no transition holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def add_listener(self, listener: TransitionListener) -> None:
        """Register ``listener(project, previous_status, transition, actor)``."""
        self._listeners.append(listener)

    def _project_lock(self, project_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.Lock()
            return lock

    # ── Validation ────────────────────────────────────────────────────

    def build_validation_context(self, project: dict, supplied: dict | None = None, *,
                                 final_deliverables: list | None = None) -> ValidationContext:
        ctx = ValidationContext.from_mapping(supplied)
        project_id = project["id"]

        if final_deliverables:
            ctx.has_final_deliverables = True
            ctx.sources["has_final_deliverables"] = "request"

        if self.versions is not None:
            ctx.has_draft_files = self.versions.has_versions(project_id)
            ctx.sources["has_draft_files"] = "version_ledger"
            ctx.has_final_deliverables = bool(
                final_deliverables
                or project.get("final_deliverables")
                or self.versions.has_approved_version(project_id)
            )
            ctx.sources["has_final_deliverables"] = "version_ledger"

        if self.feedback is not None:
            ctx.has_feedback = self.feedback.has_feedback(project_id)
            ctx.sources["has_feedback"] = "feedback_history"

        if self.modifications is not None:
            ctx.remaining_modifications = self.modifications.remaining_modifications(project_id)
            ctx.sources["remaining_modifications"] = "modification_quota"
        elif not supplied or not (
            "remaining_modifications" in supplied or "remainingModifications" in supplied
        ):
            ctx.remaining_modifications = int(project.get("remaining_modification_count") or 0)
            ctx.sources["remaining_modifications"] = "project"

        return ctx

    @staticmethod
    def evaluate_rules(transition: WorkflowTransition, context: ValidationContext) -> list[str]:
        return [rule for rule in transition.validation_rules if not context.check(rule)]

    def validate_transition(self, project: dict, target_status: str, acting_role: str,
                            validation_context: dict | None = None) -> dict:
        """Dry run of ``request_transition``.

        Returns:
            {"valid": bool, "from": str, "to": str, "reason": str|None,
             "failed_rules": [...], "context": {...}|None}
        """
        _require_role(acting_role)
        current = project["status"]
        result = {"valid": False, "from": current, "to": target_status, "reason": None,
                  "failed_rules": [], "context": None}

        transition = get_transition(current, target_status)
        if transition is None:
            result["reason"] = InvalidTransitionError(current, target_status).reason
            return result
        if not transition.allows(acting_role):
            result["reason"] = ForbiddenError(current, target_status, transition.required_role, acting_role).reason
            return result

        ctx = self.build_validation_context(project, validation_context)
        result["context"] = ctx.to_dict()
        failed = self.evaluate_rules(transition, ctx)
        if failed:
            result["failed_rules"] = failed
            result["reason"] = " ".join(VALIDATION_RULE_MESSAGES[r] for r in failed)
            return result

        result["valid"] = True
        return result

    # ── Transition ────────────────────────────────────────────────────

    def request_transition(
        self,
        project_id: str,
        target_status: str,
        acting_role: str,
        validation_context: dict | None = None,
        *,
        actor: str | None = None,
        completion_note: str | None = None,
        final_deliverables: list | None = None,
        expected_revision: int | None = None,
    ) -> dict:
        """Move a project to ``target_status`` and return its new state.

        Args:
            project_id: Project to transition.
            target_status: Requested status.
            acting_role: "client" or "designer".
            validation_context: Caller-supplied facts for rules no ledger covers.
            actor: User id recorded in the audit trail.
            completion_note: Stored when entering ``completion_requested``.
            final_deliverables: Stored when entering ``completion_requested``.
            expected_revision: Revision the caller last saw; a mismatch is stale.

        Raises:
            ValidationError, NotFoundError, InvalidTransitionError,
            ForbiddenError, ValidationFailedError, StaleRevisionError
        """
        _require_role(acting_role)

        with self._project_lock(project_id):
            project = self.projects.get_project(project_id)
            revision = project["revision"]
            if expected_revision is not None and expected_revision != revision:
                raise StaleRevisionError(f"project:{project_id}", expected_revision, revision)

            current = project["status"]
            transition = get_transition(current, target_status)
            if transition is None:
                logger.info("Transition rejected: undeclared edge",
                            extra={"project_id": project_id, "from_status": current,
                                   "to_status": target_status, "acting_role": acting_role})
                raise InvalidTransitionError(current, target_status)

            if not transition.allows(acting_role):
                logger.info("Transition rejected: role mismatch",
                            extra={"project_id": project_id, "from_status": current,
                                   "to_status": target_status, "acting_role": acting_role})
                raise ForbiddenError(current, target_status, transition.required_role, acting_role)

            ctx = self.build_validation_context(
                project, validation_context, final_deliverables=final_deliverables,
            )
            failed = self.evaluate_rules(transition, ctx)
            if failed:
                logger.info("Transition rejected: %s", ", ".join(failed),
                            extra={"project_id": project_id, "from_status": current,
                                   "to_status": target_status, "acting_role": acting_role})
                raise ValidationFailedError(
                    current, target_status, failed,
                    messages=[VALIDATION_RULE_MESSAGES[r] for r in failed],
                )

            updated = self._apply(project, transition, completion_note, final_deliverables)
            saved = self.projects.save_project(updated, expected_revision=revision)

        logger.info(
            "Project %s -> %s", current, target_status,
            extra={"project_id": project_id, "from_status": current, "to_status": target_status,
                   "acting_role": acting_role, "event_type": "project.transition"},
        )
        emit(
            self.on_event,
            entity_type="project",
            entity_id=project_id,
            action="project.transition",
            actor=actor or acting_role,
            project_id=project_id,
            diff={"status": {"old": current, "new": target_status},
                  "action_id": transition.action_id,
                  "acting_role": acting_role},
        )
        for listener in self._listeners:
            try:
                listener(saved, current, transition, actor)
            except Exception:
                logger.exception("Transition listener failed",
                                 extra={"project_id": project_id, "to_status": target_status})
        return saved

    @staticmethod
    def _apply(project: dict, transition: WorkflowTransition, completion_note: str | None,
               final_deliverables: list | None) -> dict:
        now = utc_now_iso()
        target = transition.to_status
        updated = dict(project)
        updated["status"] = target
        updated["status_timestamps"] = {**(project.get("status_timestamps") or {}), target: now}
        updated["updated_at"] = now

        if target == "completion_requested":
            updated["completion_requested_at"] = now
            updated["completion_note"] = completion_note
            updated["final_deliverables"] = list(final_deliverables or project.get("final_deliverables") or [])
        elif target == "completed":
            updated["completed_at"] = now
        elif target == "archived":
            updated["archived_at"] = now

        if target not in COMPLETION_STATUSES:
            updated["completion_requested_at"] = None
            updated["completion_note"] = None
            updated["final_deliverables"] = []
        return updated

    # ── Convenience wrappers ──────────────────────────────────────────

    def project_actions(self, project_id: str, acting_role: str) -> list[dict]:
        project = self.projects.get_project(project_id)
        return available_actions(project["status"], acting_role)

    def project_progress(self, project_id: str, custom_data: dict | None = None) -> dict:
        project = self.projects.get_project(project_id)
        return {
            "project_id": project_id,
            "status": project["status"],
            "progress": calculate_progress(project["status"], custom_data),
        }

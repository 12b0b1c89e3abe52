"""
Project Blueprint — projects and their workflow.

Endpoints:
    POST   /api/v1/projects                              create (creation_pending)
    GET    /api/v1/projects                              list  ?client_id=&designer_id=&status=
    GET    /api/v1/projects/<pid>                        detail
    POST   /api/v1/projects/<pid>/transition             request a status transition
           Body: { "target_status": "...", "acting_role": "client|designer",
                   "validation_context": {...}, "completion_note": "...",
                   "final_deliverables": [...], "expected_revision": <int> }
    POST   /api/v1/projects/<pid>/transition/check       dry run of the same request
    GET    /api/v1/projects/<pid>/actions?role=          actions offered to a role
    GET    /api/v1/projects/<pid>/progress               ?completed_milestones=&total_milestones=&feedback_rounds= (or camelCase)
    GET    /api/v1/projects/<pid>/audit                  lifecycle audit trail
    GET    /api/v1/workflow/transitions                  declared transition table
    GET    /api/v1/workflow/statuses/<status>            display info for a status

Layer contract:
    - Blueprint: parse input, call the engine, return JSON.
    - Domain exceptions propagate to the app-level error handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from designflow.blueprints import acting_role, current_user, int_arg, json_body
from designflow.core.exceptions import ValidationError
from designflow.models.audit import list_audit
from designflow.models.workflow import PROJECT_STATUSES, WORKFLOW_TRANSITIONS
from designflow.services import workflow as workflow_rules
from designflow.services.engine import get_engine

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")


def _project_view(project: dict) -> dict:
    return {
        **project,
        "progress": workflow_rules.calculate_progress(project["status"]),
        "status_info": workflow_rules.status_display_info(project["status"]),
    }


# ═════════════════════════════════════════════════════════════════════════════
# PROJECTS
# ═════════════════════════════════════════════════════════════════════════════


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = json_body()
    project = get_engine().projects.create_project(
        client_id=data.get("client_id") or "",
        designer_id=data.get("designer_id") or "",
        name=data.get("name") or "",
        description=data.get("description") or "",
        start_date=data.get("start_date"),
        draft_deadline=data.get("draft_deadline"),
        first_review_deadline=data.get("first_review_deadline"),
        final_deadline=data.get("final_deadline"),
        total_modification_count=data.get("total_modification_count"),
        created_by=current_user(data),
    )
    return jsonify(_project_view(project)), 201


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    projects = get_engine().projects.list_projects(
        client_id=request.args.get("client_id") or None,
        designer_id=request.args.get("designer_id") or None,
        status=request.args.get("status") or None,
    )
    return jsonify({"items": [_project_view(p) for p in projects], "total": len(projects)})


@project_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(_project_view(get_engine().projects.get_project(project_id)))


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════════


@project_bp.route("/projects/<project_id>/transition", methods=["POST"])
def transition_project(project_id):
    data = json_body()
    target = (data.get("target_status") or "").strip()
    if not target:
        raise ValidationError("target_status is required")

    context = data.get("validation_context")
    if context is not None and not isinstance(context, dict):
        raise ValidationError("validation_context must be an object")

    deliverables = data.get("final_deliverables")
    if deliverables is not None and not isinstance(deliverables, list):
        raise ValidationError("final_deliverables must be a list")

    expected_revision = data.get("expected_revision")
    if expected_revision is not None and (isinstance(expected_revision, bool) or not isinstance(expected_revision, int)):
        raise ValidationError("expected_revision must be an integer")

    project = get_engine().workflow.request_transition(
        project_id,
        target,
        acting_role(data),
        context,
        actor=current_user(data),
        completion_note=data.get("completion_note"),
        final_deliverables=deliverables,
        expected_revision=expected_revision,
    )
    return jsonify(_project_view(project))


@project_bp.route("/projects/<project_id>/transition/check", methods=["POST"])
def check_transition(project_id):
    data = json_body()
    target = (data.get("target_status") or "").strip()
    if not target:
        raise ValidationError("target_status is required")
    engine = get_engine()
    project = engine.projects.get_project(project_id)
    result = engine.workflow.validate_transition(
        project, target, acting_role(data), data.get("validation_context"),
    )
    return jsonify(result)


@project_bp.route("/projects/<project_id>/actions", methods=["GET"])
def project_actions(project_id):
    role = acting_role({"acting_role": request.args.get("role", "")})
    engine = get_engine()
    project = engine.projects.get_project(project_id)
    return jsonify({
        "project_id": project_id,
        "status": project["status"],
        "acting_role": role,
        "actions": workflow_rules.available_actions(project["status"], role),
    })


@project_bp.route("/projects/<project_id>/progress", methods=["GET"])
def project_progress(project_id):
    custom = {}
    for name in ("completed_milestones", "total_milestones", "feedback_rounds",
                 "milestonesCompleted", "totalMilestones", "feedbackRounds"):
        value = int_arg(name)
        if value is not None:
            custom[name] = value
    return jsonify(get_engine().workflow.project_progress(project_id, custom))


@project_bp.route("/projects/<project_id>/audit", methods=["GET"])
def project_audit(project_id):
    get_engine().projects.get_project(project_id)
    limit = min(int_arg("limit", 200), 1000)
    items = list_audit(project_id, entity_type=request.args.get("entity_type") or None, limit=limit)
    return jsonify({"items": items, "total": len(items)})


@project_bp.route("/workflow/transitions", methods=["GET"])
def list_transitions():
    return jsonify({
        "statuses": list(PROJECT_STATUSES),
        "transitions": [t.to_dict() for t in WORKFLOW_TRANSITIONS],
    })


@project_bp.route("/workflow/statuses/<status>", methods=["GET"])
def status_info(status):
    info = workflow_rules.status_display_info(status)
    info["progress"] = workflow_rules.calculate_progress(status)
    return jsonify(info)

"""
Feedback History Blueprint.

Endpoints:
    POST   /api/v1/projects/<pid>/feedback                   submit feedback (history v1)
    GET    /api/v1/projects/<pid>/feedback                   histories of a project
    GET    /api/v1/projects/<pid>/feedback/statistics        version/change counts
    GET    /api/v1/feedback/<fid>                            full history
    PATCH  /api/v1/feedback/<fid>                            update → new version if changed
    GET    /api/v1/feedback/<fid>/versions/<n>               one snapshot
    GET    /api/v1/feedback/<fid>/compare?v1=&v2=            changes + summary
    POST   /api/v1/feedback/<fid>/rollback                   Body: { "target_version": n }
"""

import logging

from flask import Blueprint, jsonify

from designflow.blueprints import current_user, int_arg, json_body
from designflow.core.exceptions import ValidationError
from designflow.services.engine import get_engine

logger = logging.getLogger(__name__)

feedback_bp = Blueprint("feedback", __name__, url_prefix="/api/v1")


@feedback_bp.route("/projects/<project_id>/feedback", methods=["POST"])
def create_feedback(project_id):
    data = json_body()
    engine = get_engine()
    engine.projects.get_project(project_id)

    feedback = {k: v for k, v in data.items() if k != "actor"}
    feedback["project_id"] = project_id
    history = engine.feedback.create_feedback(feedback, created_by=current_user(data))
    return jsonify(history), 201


@feedback_bp.route("/projects/<project_id>/feedback", methods=["GET"])
def list_feedback(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    histories = engine.feedback.list_for_project(project_id)
    return jsonify({"items": histories, "total": len(histories)})


@feedback_bp.route("/projects/<project_id>/feedback/statistics", methods=["GET"])
def feedback_statistics(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    return jsonify(engine.feedback.get_statistics(project_id))


@feedback_bp.route("/feedback/<feedback_id>", methods=["GET"])
def get_history(feedback_id):
    return jsonify(get_engine().feedback.get_history(feedback_id))


@feedback_bp.route("/feedback/<feedback_id>", methods=["PATCH"])
def update_feedback(feedback_id):
    data = json_body()
    updates = data.get("updates", data)
    if not isinstance(updates, dict):
        raise ValidationError("updates must be an object")
    updates = {k: v for k, v in updates.items() if k != "actor"}
    return jsonify(get_engine().feedback.update_feedback(feedback_id, updates, current_user(data)))


@feedback_bp.route("/feedback/<feedback_id>/versions/<int:version>", methods=["GET"])
def get_feedback_version(feedback_id, version):
    return jsonify(get_engine().feedback.get_version(feedback_id, version))


@feedback_bp.route("/feedback/<feedback_id>/compare", methods=["GET"])
def compare_feedback(feedback_id):
    v1, v2 = int_arg("v1"), int_arg("v2")
    if v1 is None or v2 is None:
        raise ValidationError("Query parameters 'v1' and 'v2' are required")
    ledger = get_engine().feedback
    changes = ledger.compare_versions(feedback_id, v1, v2)
    return jsonify({
        "feedback_id": feedback_id,
        "from_version": v1,
        "to_version": v2,
        "changes": changes,
        "summary": ledger.get_changes_summary(changes),
    })


@feedback_bp.route("/feedback/<feedback_id>/rollback", methods=["POST"])
def rollback_feedback(feedback_id):
    data = json_body()
    target = data.get("target_version")
    if isinstance(target, bool) or not isinstance(target, int):
        raise ValidationError("target_version must be an integer")
    return jsonify(get_engine().feedback.rollback_to_version(feedback_id, target, current_user(data)))

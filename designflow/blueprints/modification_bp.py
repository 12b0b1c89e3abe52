"""
Modification Request Blueprint.

Endpoints:
    POST   /api/v1/projects/<pid>/modifications                       file a request
           Body: { "description": "...", "urgency": "normal|urgent",
                   "feedback_ids": [...], "estimated_completion_date": "...",
                   "notes": "..." }
    GET    /api/v1/projects/<pid>/modifications?status=               list
    GET    /api/v1/projects/<pid>/modifications/quota                 quota status
    GET    /api/v1/projects/<pid>/modifications/statistics            counts
    GET    /api/v1/projects/<pid>/modifications/cost?urgency=         price of the next request
    GET    /api/v1/projects/<pid>/modifications/available-feedback    feedback not yet requested
    GET    /api/v1/projects/<pid>/modifications/<rid>                 detail
    POST   /api/v1/projects/<pid>/modifications/<rid>/approve
    POST   /api/v1/projects/<pid>/modifications/<rid>/reject          Body: { "rejection_reason": "..." }
    POST   /api/v1/projects/<pid>/modifications/<rid>/start
    POST   /api/v1/projects/<pid>/modifications/<rid>/complete        Body: { "actual_completion_date": "..." }
"""

import logging

from flask import Blueprint, jsonify, request

from designflow.blueprints import current_user, json_body
from designflow.services.engine import get_engine
from designflow.services.modification_quota import URGENCY_NORMAL

logger = logging.getLogger(__name__)

modification_bp = Blueprint("modifications", __name__, url_prefix="/api/v1/projects/<project_id>")


@modification_bp.route("/modifications", methods=["POST"])
def create_request(project_id):
    data = json_body()
    request_ = get_engine().modifications.create_request(
        project_id,
        description=data.get("description") or "",
        requested_by=current_user(data),
        urgency=data.get("urgency") or URGENCY_NORMAL,
        feedback_ids=data.get("feedback_ids"),
        estimated_completion_date=data.get("estimated_completion_date"),
        notes=data.get("notes"),
    )
    return jsonify(request_), 201


@modification_bp.route("/modifications", methods=["GET"])
def list_requests(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    items = engine.modifications.list_requests(project_id, status=request.args.get("status") or None)
    return jsonify({"items": items, "total": len(items)})


@modification_bp.route("/modifications/quota", methods=["GET"])
def quota_status(project_id):
    attempting = request.args.get("attempting_new_request", "").lower() in ("1", "true", "yes")
    return jsonify(get_engine().modifications.get_quota_status(project_id, attempting_new_request=attempting))


@modification_bp.route("/modifications/statistics", methods=["GET"])
def statistics(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    return jsonify(engine.modifications.get_statistics(project_id))


@modification_bp.route("/modifications/cost", methods=["GET"])
def additional_cost(project_id):
    urgency = request.args.get("urgency") or URGENCY_NORMAL
    return jsonify(get_engine().modifications.calculate_additional_cost(project_id, urgency))


@modification_bp.route("/modifications/available-feedback", methods=["GET"])
def available_feedback(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    items = engine.modifications.available_feedback_for_modification(
        project_id, report_id=request.args.get("report_id") or None,
    )
    return jsonify({"items": items, "total": len(items)})


@modification_bp.route("/modifications/<request_id>", methods=["GET"])
def get_request(project_id, request_id):
    return jsonify(get_engine().modifications.get_request(project_id, request_id))


@modification_bp.route("/modifications/<request_id>/approve", methods=["POST"])
def approve_request(project_id, request_id):
    data = json_body()
    return jsonify(get_engine().modifications.approve_request(project_id, request_id, current_user(data)))


@modification_bp.route("/modifications/<request_id>/reject", methods=["POST"])
def reject_request(project_id, request_id):
    data = json_body()
    return jsonify(get_engine().modifications.reject_request(
        project_id, request_id, data.get("rejection_reason") or "", current_user(data),
    ))


@modification_bp.route("/modifications/<request_id>/start", methods=["POST"])
def start_request(project_id, request_id):
    data = json_body()
    return jsonify(get_engine().modifications.start_request(project_id, request_id, current_user(data)))


@modification_bp.route("/modifications/<request_id>/complete", methods=["POST"])
def complete_request(project_id, request_id):
    data = json_body()
    return jsonify(get_engine().modifications.complete_request(
        project_id, request_id, current_user(data),
        actual_completion_date=data.get("actual_completion_date"),
    ))

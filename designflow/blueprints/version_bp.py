"""
Design Version Blueprint.

Endpoints:
    POST   /api/v1/projects/<pid>/versions           create the next version
           Body: { "files": [{"name", "type", "size", "url"}, ...],
                   "title": "...", "description": "..." }
    GET    /api/v1/projects/<pid>/versions           all versions, oldest first
    GET    /api/v1/projects/<pid>/versions/current   current version (or null)
    GET    /api/v1/projects/<pid>/versions/stats     counts per project
    GET    /api/v1/versions/compare?a=<vid>&b=<vid>  side-by-side payload
    GET    /api/v1/versions/<vid>                    detail
    POST   /api/v1/versions/<vid>/approve            approve (idempotent)
    POST   /api/v1/versions/<vid>/set-current        move the current pointer
    DELETE /api/v1/versions/<vid>                    delete
"""

import logging

from flask import Blueprint, jsonify, request

from designflow.blueprints import current_user, json_body
from designflow.core.exceptions import NotFoundError, ValidationError
from designflow.services.engine import get_engine

logger = logging.getLogger(__name__)

version_bp = Blueprint("versions", __name__, url_prefix="/api/v1")


@version_bp.route("/projects/<project_id>/versions", methods=["POST"])
def create_version(project_id):
    data = json_body()
    files = data.get("files") or []
    if not isinstance(files, list):
        raise ValidationError("files must be a list")

    engine = get_engine()
    engine.projects.get_project(project_id)
    version = engine.versions.create_version(
        project_id,
        files,
        current_user(data),
        title=data.get("title"),
        description=data.get("description"),
    )
    return jsonify(version), 201


@version_bp.route("/projects/<project_id>/versions", methods=["GET"])
def list_versions(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    versions = engine.versions.list_versions(project_id)
    return jsonify({"items": versions, "total": len(versions)})


@version_bp.route("/projects/<project_id>/versions/current", methods=["GET"])
def current_version(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    return jsonify({"version": engine.versions.get_current_version(project_id)})


@version_bp.route("/projects/<project_id>/versions/stats", methods=["GET"])
def version_stats(project_id):
    engine = get_engine()
    engine.projects.get_project(project_id)
    return jsonify(engine.versions.get_version_stats(project_id))


@version_bp.route("/versions/compare", methods=["GET"])
def compare_versions():
    a, b = request.args.get("a"), request.args.get("b")
    if not a or not b:
        raise ValidationError("Query parameters 'a' and 'b' are required")
    return jsonify(get_engine().versions.prepare_comparison(a, b))


@version_bp.route("/versions/<version_id>", methods=["GET"])
def get_version(version_id):
    return jsonify(get_engine().versions.get_version(version_id))


@version_bp.route("/versions/<version_id>/approve", methods=["POST"])
def approve_version(version_id):
    data = json_body()
    return jsonify(get_engine().versions.approve_version(version_id, current_user(data)))


@version_bp.route("/versions/<version_id>/set-current", methods=["POST"])
def set_current_version(version_id):
    data = json_body()
    return jsonify(get_engine().versions.set_current_version(version_id, current_user(data)))


@version_bp.route("/versions/<version_id>", methods=["DELETE"])
def delete_version(version_id):
    if not get_engine().versions.delete_version(version_id, current_user()):
        raise NotFoundError(resource="DesignVersion", resource_id=version_id)
    return jsonify({"deleted": True, "id": version_id})

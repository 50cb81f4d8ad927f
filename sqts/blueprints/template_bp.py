"""
SQTS Schedule Engine
Activity template blueprint: definitions, versions and project sync.

Endpoints:
  Definitions:   GET/POST /templates/<id>/definitions
                 PUT/DELETE /definitions/<id>
  Versions:      GET/POST /templates/<id>/versions
                 GET/DELETE /template-versions/<id>
                 POST /template-versions/<id>/restore
  Sync status:   GET /templates/<id>/out-of-sync
                 GET /templates/<id>/project-status
                 GET /projects/<id>/out-of-sync
  Sync:          GET  /project-activities/<id>/sync/preview
                 POST /project-activities/<id>/sync/apply
                 POST /templates/sync-all
  Instantiation: POST /templates/<id>/apply-to-projects
"""

import logging

from flask import Blueprint, jsonify

from sqts.blueprints import json_body, register_error_handlers
from sqts.services import schedule_item_service
from sqts.services import template_version_service as tvs
from sqts.utils.errors import E, api_error
from sqts.utils.helpers import parse_id_list

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1")
register_error_handlers(template_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Definitions
# ═════════════════════════════════════════════════════════════════════════════


@template_bp.route("/templates/<int:template_id>/definitions", methods=["GET"])
def list_definitions(template_id):
    return jsonify([d.to_dict() for d in schedule_item_service.list_definitions(template_id)]), 200


@template_bp.route("/templates/<int:template_id>/definitions", methods=["POST"])
def create_definition(template_id):
    """Body: {name, kind, anchor_type, anchor_ref_id?, anchor_milestone_name?,
    fixed_date?, offset_days?, sort_order?}
    """
    defn = schedule_item_service.create_definition(template_id, json_body())
    return jsonify(defn.to_dict()), 201


@template_bp.route("/definitions/<int:definition_id>", methods=["PUT"])
def update_definition(definition_id):
    defn = schedule_item_service.update_definition(definition_id, json_body())
    return jsonify(defn.to_dict()), 200


@template_bp.route("/definitions/<int:definition_id>", methods=["DELETE"])
def delete_definition(definition_id):
    schedule_item_service.delete_definition(definition_id)
    return jsonify({"deleted": True, "id": definition_id}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Versions
# ═════════════════════════════════════════════════════════════════════════════


@template_bp.route("/templates/<int:template_id>/versions", methods=["GET"])
def list_versions(template_id):
    return jsonify([v.to_dict() for v in tvs.list_versions(template_id)]), 200


@template_bp.route("/templates/<int:template_id>/versions", methods=["POST"])
def save_version(template_id):
    """Body: {name?, description?}"""
    data = json_body()
    version = tvs.save_version(template_id, data.get("name"), data.get("description"))
    return jsonify(version.to_dict()), 201


@template_bp.route("/template-versions/<int:version_id>", methods=["GET"])
def get_version(version_id):
    return jsonify(tvs.get_version(version_id).to_dict(include_snapshot=True)), 200


@template_bp.route("/template-versions/<int:version_id>", methods=["DELETE"])
def delete_version(version_id):
    tvs.delete_version(version_id)
    return jsonify({"deleted": True, "id": version_id}), 200


@template_bp.route("/template-versions/<int:version_id>/restore", methods=["POST"])
def restore_version(version_id):
    template = tvs.restore_version(version_id)
    return jsonify(template.to_dict(include_definitions=True)), 200


# ═════════════════════════════════════════════════════════════════════════════
# Sync status
# ═════════════════════════════════════════════════════════════════════════════


@template_bp.route("/templates/<int:template_id>/out-of-sync", methods=["GET"])
def template_out_of_sync(template_id):
    return jsonify(tvs.check_out_of_sync(template_id)), 200


@template_bp.route("/templates/<int:template_id>/project-status", methods=["GET"])
def template_project_status(template_id):
    return jsonify(tvs.project_template_status(template_id)), 200


@template_bp.route("/projects/<int:project_id>/out-of-sync", methods=["GET"])
def project_out_of_sync(project_id):
    return jsonify(tvs.check_project_out_of_sync(project_id)), 200


# ═════════════════════════════════════════════════════════════════════════════
# Sync & batch apply
# ═════════════════════════════════════════════════════════════════════════════


@template_bp.route("/project-activities/<int:project_activity_id>/sync/preview", methods=["GET"])
def sync_preview(project_activity_id):
    return jsonify(tvs.preview_sync(project_activity_id)), 200


@template_bp.route("/project-activities/<int:project_activity_id>/sync/apply", methods=["POST"])
def sync_apply(project_activity_id):
    return jsonify(tvs.apply_sync(project_activity_id)), 200


@template_bp.route("/templates/sync-all", methods=["POST"])
def sync_all():
    """Body: {project_activity_ids: [int]}"""
    data = json_body()
    if "project_activity_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "project_activity_ids is required")
    ids = parse_id_list(data["project_activity_ids"], "project_activity_ids")
    return jsonify(tvs.sync_all(ids)), 200


@template_bp.route("/templates/<int:template_id>/apply-to-projects", methods=["POST"])
def apply_to_projects(template_id):
    """Body: {project_ids: [int]}"""
    data = json_body()
    if "project_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "project_ids is required")
    ids = parse_id_list(data["project_ids"], "project_ids")
    return jsonify({"results": tvs.apply_to_projects(template_id, ids)}), 200

"""
SQTS Schedule Engine
Project schedule blueprint.

Endpoints:
    GET  /api/v1/projects/<id>/schedule/derived[?supplier_id=]   derived dates
    GET  /api/v1/projects/<id>/propagation/preview               what would change
    POST /api/v1/projects/<id>/propagation/apply                 apply for suppliers
    GET  /api/v1/projects/<id>/milestones                        project milestones
    PUT  /api/v1/milestones/dates                                bulk milestone dates
    POST /api/v1/projects/<id>/suppliers                         attach a supplier
    GET  /api/v1/projects/<id>/activities                        activities + items
    POST /api/v1/projects/<id>/activities                        instantiate a template
    PUT  /api/v1/project-items/<id>                              edit a project item
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import select

from sqts.blueprints import json_body, register_error_handlers
from sqts.core.exceptions import NotFoundError
from sqts.models import db
from sqts.models.project import Project
from sqts.models.schedule import ProjectActivity, ProjectScheduleItem
from sqts.services import (
    instantiation_service,
    milestone_service,
    propagation_service,
    schedule_item_service,
)
from sqts.services.date_derivation import derive_project
from sqts.services.propagation_planner import preview_propagation
from sqts.utils.errors import E, api_error
from sqts.utils.helpers import parse_id_list

logger = logging.getLogger(__name__)

schedule_bp = Blueprint("schedule", __name__, url_prefix="/api/v1")
register_error_handlers(schedule_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Derivation & propagation
# ═════════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:project_id>/schedule/derived", methods=["GET"])
def get_derived_schedule(project_id):
    """Derived date per project item.

    Without ``supplier_id`` COMPLETION-anchored items stay null. ``cycles``
    lists the item ids of every anchor cycle found.
    """
    supplier_id = request.args.get("supplier_id", type=int)
    result = derive_project(project_id, supplier_id=supplier_id)
    body = result.to_dict()
    body.update({"project_id": project_id, "supplier_id": supplier_id})
    return jsonify(body), 200


@schedule_bp.route("/projects/<int:project_id>/propagation/preview", methods=["GET"])
def propagation_preview(project_id):
    return jsonify(preview_propagation(project_id).to_dict()), 200


@schedule_bp.route("/projects/<int:project_id>/propagation/apply", methods=["POST"])
def propagation_apply(project_id):
    """Apply propagation.

    Body: {
        supplier_ids: [int],                  (required)
        expected?: {instance_id: "YYYY-MM-DD"},
        strict?: bool
    }
    """
    data = json_body()
    if "supplier_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "supplier_ids is required")
    supplier_ids = parse_id_list(data["supplier_ids"], "supplier_ids")

    result = propagation_service.apply_propagation(
        project_id,
        supplier_ids,
        expected=data.get("expected"),
        strict=bool(data.get("strict", False)),
    )
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# Milestones
# ═════════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:project_id>/milestones", methods=["GET"])
def list_milestones(project_id):
    return jsonify([m.to_dict() for m in milestone_service.list_milestones(project_id)]), 200


@schedule_bp.route("/milestones/dates", methods=["PUT"])
def update_milestone_dates():
    """Body: {updates: [{milestone_id, date: "YYYY-MM-DD" | null}]}"""
    data = json_body()
    if "updates" not in data:
        return api_error(E.VALIDATION_REQUIRED, "updates is required")
    return jsonify(milestone_service.update_milestone_dates(data["updates"])), 200


# ═════════════════════════════════════════════════════════════════════════════
# Suppliers & activities
# ═════════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:project_id>/suppliers", methods=["POST"])
def attach_supplier(project_id):
    """Body: {supplier_id}. 201 when newly attached, 200 when already on the project."""
    data = json_body()
    supplier_id = data.get("supplier_id")
    if isinstance(supplier_id, bool) or not isinstance(supplier_id, int):
        return api_error(E.VALIDATION_REQUIRED, "supplier_id (integer) is required")
    result = instantiation_service.attach_supplier(project_id, supplier_id)
    return jsonify(result), 201 if result["created"] else 200


@schedule_bp.route("/projects/<int:project_id>/activities", methods=["GET"])
def list_activities(project_id):
    if not db.session.get(Project, project_id):
        raise NotFoundError("Project", project_id)
    activities = db.session.execute(
        select(ProjectActivity)
        .where(ProjectActivity.project_id == project_id)
        .order_by(ProjectActivity.sort_order, ProjectActivity.id)
    ).scalars().all()
    result = []
    for activity in activities:
        d = activity.to_dict()
        d["items"] = [
            i.to_dict() for i in db.session.execute(
                select(ProjectScheduleItem)
                .where(ProjectScheduleItem.project_activity_id == activity.id)
                .order_by(ProjectScheduleItem.sort_order, ProjectScheduleItem.id)
            ).scalars()
        ]
        result.append(d)
    return jsonify(result), 200


@schedule_bp.route("/projects/<int:project_id>/activities", methods=["POST"])
def create_activity(project_id):
    """Body: {activity_template_id}"""
    data = json_body()
    template_id = data.get("activity_template_id")
    if isinstance(template_id, bool) or not isinstance(template_id, int):
        return api_error(E.VALIDATION_REQUIRED, "activity_template_id (integer) is required")
    return jsonify(instantiation_service.attach_activity(project_id, template_id)), 201


@schedule_bp.route("/project-items/<int:item_id>", methods=["PUT"])
def update_project_item(item_id):
    """Edit name/kind/anchor/offset/sort_order of a project item."""
    item = schedule_item_service.update_project_item(item_id, json_body())
    return jsonify(item.to_dict()), 200

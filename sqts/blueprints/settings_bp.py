"""
SQTS Schedule Engine
Settings blueprint.

Endpoints:
    GET    /api/v1/settings                 every setting at its effective value
    GET    /api/v1/settings/policy          propagation policy as booleans
    PUT    /api/v1/settings/<key>           upsert {value}
    DELETE /api/v1/settings/<key>           reset to the config default
"""

from flask import Blueprint, jsonify

from sqts.blueprints import json_body, register_error_handlers
from sqts.services import settings_service
from sqts.utils.errors import E, api_error

settings_bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")
register_error_handlers(settings_bp)


@settings_bp.route("", methods=["GET"])
def list_settings():
    return jsonify(settings_service.list_settings()), 200


@settings_bp.route("/policy", methods=["GET"])
def get_policy():
    return jsonify(settings_service.get_propagation_policy().to_dict()), 200


@settings_bp.route("/<string:key>", methods=["PUT"])
def update_setting(key):
    data = json_body()
    if "value" not in data:
        return api_error(E.VALIDATION_REQUIRED, "value is required")
    row = settings_service.update_setting(key, data["value"])
    return jsonify(row.to_dict()), 200


@settings_bp.route("/<string:key>", methods=["DELETE"])
def reset_setting(key):
    settings_service.delete_setting(key)
    return jsonify({"deleted": True, "key": key}), 200

"""
SQTS Schedule Engine
Blueprint registry and shared blueprint helpers.
"""

import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from sqts.core.exceptions import (
    ConcurrencyConflict,
    ConflictError,
    NotFoundError,
    PropagationApplyError,
    ValidationError,
)
from sqts.models import db
from sqts.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Translate engine exceptions into JSON errors for every route on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(ConcurrencyConflict)
    def _handle_concurrency(error: ConcurrencyConflict):
        return api_error(E.CONFLICT_STALE_PLAN, str(error), conflicts=error.conflicts)

    @bp.errorhandler(PropagationApplyError)
    def _handle_apply_error(error: PropagationApplyError):
        return api_error(E.DATABASE, str(error), updated_count=error.updated_count)

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")


def json_body() -> dict:
    """Request JSON object, or an empty dict when the body is missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

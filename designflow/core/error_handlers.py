"""
App-wide mapping from domain exceptions to JSON error responses.

Blueprints let service exceptions propagate; the handlers here turn each
type into the standard ``api_error`` body with a fixed status code:

    NotFoundError          → 404 ERR_NOT_FOUND
    ValidationError        → 400 ERR_VALIDATION_INVALID
    EmptyInputError        → 400 ERR_EMPTY_INPUT
    ForbiddenError         → 403 ERR_FORBIDDEN
    InvalidTransitionError → 409 TRANSITION_INVALID
    ValidationFailedError  → 422 TRANSITION_RULES_FAILED
    StaleRevisionError     → 409 ERR_CONFLICT_STALE
    ConflictError          → 409 ERR_CONFLICT_STATE
"""

import logging

from flask import request

from designflow.core.exceptions import (
    ConflictError,
    EmptyInputError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StaleRevisionError,
    ValidationError,
    ValidationFailedError,
)
from designflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(app):

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error), details={"resource": error.resource,
                                                           "id": error.resource_id})

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(EmptyInputError)
    def _handle_empty(error: EmptyInputError):
        return api_error(E.EMPTY_INPUT, str(error))

    @app.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, error.reason, details={
            "from": error.from_status,
            "to": error.to_status,
            "required_role": error.required_role,
            "acting_role": error.acting_role,
        })

    @app.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(E.TRANSITION_INVALID, error.reason,
                         details={"from": error.from_status, "to": error.to_status})

    @app.errorhandler(ValidationFailedError)
    def _handle_rules_failed(error: ValidationFailedError):
        return api_error(E.RULES_FAILED, error.reason, details={
            "from": error.from_status,
            "to": error.to_status,
            "failed_rules": error.failed_rules,
            "messages": error.messages,
        })

    @app.errorhandler(StaleRevisionError)
    def _handle_stale(error: StaleRevisionError):
        logger.warning("Stale write rejected on %s %s", request.method, request.path)
        return api_error(E.CONFLICT_STALE, str(error),
                         details={"expected_revision": error.expected, "actual_revision": error.actual})

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error),
                         details={"resource": error.resource, "field": error.field})

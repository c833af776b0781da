# offsite_api/common/errors.py
import logging

from flask import Blueprint, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError

from offsite_api.common.http import fail
from offsite_api.extensions import db

log = logging.getLogger(__name__)

bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Custom API Error class."""
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, code=None, message=None, status_code=None, payload=None):
        super().__init__(message or code or self.code)
        self.code = code or self.code
        self.message = message or self.code
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload


class ValidationFailed(APIError):
    """Malformed input; raised before any state is read."""
    status_code = 422
    code = "VALIDATION_ERROR"


class Forbidden(APIError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(APIError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(APIError):
    """Wrong status for the transition, replayed code, self-approval..."""
    status_code = 409
    code = "INVALID_STATUS"


class SequenceUnavailable(APIError):
    """Counter advance failed. Callers may retry; never fabricate an id."""
    status_code = 503
    code = "SEQUENCE_UNAVAILABLE"
    retryable = True


class FaceEngineUnavailable(APIError):
    status_code = 503
    code = "FACE_ENGINE_UNAVAILABLE"

    def __init__(self, message="Face recognition is not available on this server"):
        super().__init__(message=message)


@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    db.session.rollback()
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)

@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    db.session.rollback()
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, code="CONSTRAINT_ERROR",
                detail=str(e.orig) if getattr(e, "orig", None) else str(e))

@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    db.session.rollback()
    current_app.logger.exception(e)
    return fail(message="Internal Server Error", status=500)

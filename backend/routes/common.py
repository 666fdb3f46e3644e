"""Request helpers shared by the blueprints."""

from flask import jsonify, request

from integrations.errors import (
    AuthExpired,
    NotConnected,
    ReportFatal,
    ReportTimeout,
    SyncError,
    ValidationRejected,
)
from integrations.logging_config import get_logger

logger = get_logger(__name__)

# Most specific first
ERROR_STATUS = (
    (NotConnected, 400),
    (AuthExpired, 401),
    (ValidationRejected, 422),
    (ReportFatal, 422),
    (ReportTimeout, 504),
)


def get_owner_id():
    """Owner id from the query string or JSON body."""
    owner_id = request.args.get("owner_id")
    if not owner_id and request.is_json:
        owner_id = (request.get_json(silent=True) or {}).get("owner_id")
    if not owner_id:
        owner_id = request.form.get("owner_id")
    return owner_id


def missing_owner():
    return jsonify({"error": "owner_id is required"}), 400


def error_response(e: Exception, action: str):
    """Translate an exception into a JSON error response."""
    for error_class, status in ERROR_STATUS:
        if isinstance(e, error_class):
            logger.warning(f"{action} failed: {e}")
            return jsonify({"error": str(e), "code": e.code}), status

    if isinstance(e, ValueError):
        return jsonify({"error": str(e)}), 404 if "not found" in str(e) else 400

    logger.exception(f"{action} error: {e}")
    body = {"error": str(e)}
    if isinstance(e, SyncError):
        body["code"] = e.code
    return jsonify(body), 500

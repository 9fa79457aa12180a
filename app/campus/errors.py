from __future__ import annotations

from typing import Any

from flask import Flask, current_app, g, has_app_context, jsonify
from werkzeug.exceptions import HTTPException


class CampusError(Exception):
    """
    Base for errors that map onto a JSON error envelope.
    """

    status_code = 500
    default_message = "Internal server error."

    def __init__(self, message: str | None = None, *, error: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.error = error

    def to_envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "message": self.message}
        if self.error:
            body["error"] = self.error
        return body


class ValidationError(CampusError):
    status_code = 422
    default_message = "The given data was invalid."

    def __init__(self, errors: dict[str, list[str]] | str, message: str | None = None) -> None:
        if isinstance(errors, str):
            message = message or errors
            errors = {}
        super().__init__(message)
        self.errors = errors

    def to_envelope(self) -> dict[str, Any]:
        body = super().to_envelope()
        body["errors"] = self.errors
        return body


class NotFound(CampusError):
    status_code = 404
    default_message = "Record not found."


class Conflict(CampusError):
    status_code = 422
    default_message = "Record conflicts with an existing one."


class StorageIOError(CampusError):
    status_code = 500
    default_message = "Storage operation failed."


class Unauthenticated(CampusError):
    status_code = 401
    default_message = "Authentication required."


class Forbidden(CampusError):
    status_code = 403
    default_message = "You do not have permission to perform this action."


def _rollback_request_session() -> None:
    if not has_app_context():
        return
    s = getattr(g, "db_session", None)
    if s is not None:
        s.rollback()


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CampusError)
    def _campus_error(e: CampusError):  # type: ignore[no-redef]
        _rollback_request_session()
        rid = getattr(g, "request_id", None)
        if e.status_code >= 500:
            current_app.logger.error("%s (request_id=%s): %s", type(e).__name__, rid, e.error or e.message)
        else:
            current_app.logger.info("%s (request_id=%s): %s", type(e).__name__, rid, e.message)
        return jsonify(e.to_envelope()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        _rollback_request_session()
        if e.code == 413:
            max_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
            return jsonify({"success": False, "message": f"File too large. Maximum request size is {max_mb}MB."}), 413
        return jsonify({"success": False, "message": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        _rollback_request_session()
        # Stack trace goes to the logs only; clients get a generic envelope.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"success": False, "message": "Internal server error."}), 500

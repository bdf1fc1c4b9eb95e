"""
Error taxonomy for the document store.

Every error carries an HTTP status and a short machine-readable code; the app
factory renders them as JSON (see ``register_error_handlers``).
"""

from __future__ import annotations

from flask import Flask, g, jsonify


class DocumentStoreError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class AuthorizationError(DocumentStoreError):
    status_code = 403
    code = "Forbidden"


class ValidationError(DocumentStoreError):
    status_code = 400
    code = "Invalid"


class NotFoundError(DocumentStoreError):
    status_code = 404
    code = "NotFound"


class StorageError(DocumentStoreError, RuntimeError):
    status_code = 502
    code = "StorageError"


class StorageUploadError(StorageError):
    code = "StorageUploadFailed"


class StorageDeleteError(StorageError):
    code = "StorageDeleteFailed"


class ConsistencyError(DocumentStoreError):
    """Invariant violated at write time. Indicates a bug, never handled as a user error."""

    status_code = 500
    code = "ConsistencyError"


# ValidationError codes
FILE_TOO_LARGE = "FileTooLarge"
UNSUPPORTED_TYPE = "UnsupportedType"
MISSING_FILE = "MissingFile"
CANNOT_DELETE_ONLY_VERSION = "CannotDeleteOnlyVersion"
NOT_PREVIEWABLE = "NotPreviewable"


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DocumentStoreError)
    def _store_error(e: DocumentStoreError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.exception("%s (request_id=%s)", e.message, getattr(g, "request_id", None))
        else:
            app.logger.info("Rejected %s: %s (request_id=%s)", e.code, e.message, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return jsonify({"error": {"code": "Unauthorized", "message": "Login required."}}), 401

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": {"code": "NotFound", "message": "Not found."}}), 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = app.config.get("MAX_FILE_SIZE", 0) / 1024 / 1024
        return jsonify({"error": {"code": FILE_TOO_LARGE, "message": f"File size must be less than {limit_mb:g}MB."}}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": {"code": "internal_error", "message": "Internal server error."}}), 500

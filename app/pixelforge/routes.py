from flask import Blueprint, current_app

from app.pixelforge.db import ping

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Readiness: database reachable and which backend takes new uploads."""
    try:
        ping(current_app)
    except Exception as e:
        current_app.logger.error("Health check: database unreachable: %s", e)
        return {"ok": False, "database": "unreachable"}, 503
    return {"ok": True, "database": "ok", "storage_backend": current_app.config.get("STORAGE_BACKEND")}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200

"""
Thin session login. Identity and role come from the users table; everything else
about accounts (MFA, password reset, user admin) lives outside this service.
"""

from __future__ import annotations

import uuid

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.pixelforge.audit import AUTH_LOGIN, AUTH_LOGIN_FAILED, AUTH_LOGOUT, record_event
from app.pixelforge.db import db_session
from app.pixelforge.models import User

bp = Blueprint("auth", __name__)


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action=AUTH_LOGIN_FAILED,
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
        )
        s.commit()
        return jsonify({"error": {"code": "InvalidCredentials", "message": "Invalid credentials."}}), 401

    session["user_id"] = user.id
    record_event(s, actor=user, action=AUTH_LOGIN, entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"ok": True, "user": {"id": user.id, "email": user.email, "role": user.role}})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action=AUTH_LOGOUT, entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"ok": True})

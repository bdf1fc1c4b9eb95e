"""
Append-only audit trail. Events join the caller's transaction so an event exists
exactly when the change it describes was committed.
"""

import json
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.pixelforge.models import AuditEvent, User

DOC_UPLOAD = "doc.upload"
DOC_RESTORE = "doc.restore"
DOC_DELETE_VERSION = "doc.delete_version"
DOC_DELETE_GROUP = "doc.delete_group"
DOC_MIGRATE = "doc.migrate"
AUTH_LOGIN = "auth.login"
AUTH_LOGIN_FAILED = "auth.login_failed"
AUTH_LOGOUT = "auth.logout"


def _current_request_id() -> str | None:
    if not has_request_context():
        return None
    return getattr(g, "request_id", None)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    ev = AuditEvent(
        request_id=request_id or _current_request_id(),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev

"""
Access checks for project documents.

The predicates are pure: callers load the membership snapshot first and turn a
``False`` into an ``AuthorizationError``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any

from flask import abort, g

from app.pixelforge.models import ROLE_ADMIN, Project, User


@dataclass(frozen=True)
class ProjectMembership:
    project_id: int
    created_by_id: int
    assigned_user_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def from_project(cls, project: Project) -> "ProjectMembership":
        return cls(
            project_id=project.id,
            created_by_id=project.created_by_id,
            assigned_user_ids=frozenset(a.user_id for a in project.assignments),
        )


def _is_admin(role: str | None) -> bool:
    return (role or "").strip().upper() == ROLE_ADMIN


def can_read(role: str | None, user_id: int | None, project: ProjectMembership) -> bool:
    if _is_admin(role):
        return True
    if user_id is None:
        return False
    return user_id == project.created_by_id or user_id in project.assigned_user_ids


def can_write(role: str | None, user_id: int | None, project: ProjectMembership) -> bool:
    # Any project reader may upload a new version.
    return can_read(role, user_id, project)


def can_delete_version(role: str | None, user_id: int | None, project: ProjectMembership) -> bool:
    if _is_admin(role):
        return True
    return user_id is not None and user_id == project.created_by_id


def can_delete_group(role: str | None, user_id: int | None, project: ProjectMembership) -> bool:
    return can_delete_version(role, user_id, project)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped

from __future__ import annotations

from urllib.parse import urlencode

from flask import Blueprint, abort, current_app, g, jsonify, redirect, request, send_file
from werkzeug.utils import secure_filename

from app.pixelforge.db import db_session
from app.pixelforge.errors import MISSING_FILE, StorageError, ValidationError
from app.pixelforge.models import User
from app.pixelforge.modules.documents.models import DocumentGroup, DocumentVersion
from app.pixelforge.modules.documents.service import UploadedFile, VersionedDocumentStore
from app.pixelforge.rbac import require_login
from app.pixelforge.storage import StorageProvider, storage_for_provider

bp = Blueprint("documents", __name__)

_TRUTHY = ("1", "true", "yes", "on")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _store() -> VersionedDocumentStore:
    return VersionedDocumentStore(db_session(), current_app.config)


def _form_int(name: str, *, required: bool = False) -> int | None:
    raw = (request.form.get(name) or "").strip()
    if not raw:
        if required:
            raise ValidationError(f"{name} is required.")
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.")


def _group_dict(group: DocumentGroup, versions: list[DocumentVersion]) -> dict:
    return {
        "id": group.id,
        "project_id": group.project_id,
        "name": group.name,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "updated_at": group.updated_at.isoformat() if group.updated_at else None,
        "versions": [v.to_dict() for v in versions],
    }


@bp.post("/documents")
@require_login
def upload_document():
    u = _current_user()
    project_id = _form_int("project_id", required=True)
    group_id = _form_int("document_group_id")
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("Project ID and file are required.", code=MISSING_FILE)

    upload = UploadedFile(
        filename=f.filename,
        content_type=(f.mimetype or "application/octet-stream").strip(),
        data=f.read(),
    )
    result = _store().upload_version(
        project_id,
        upload,
        u,
        group_id=group_id,
        version_notes=request.form.get("version_notes"),
        replace_latest=(request.form.get("replace_latest") or "").strip().lower() in _TRUTHY,
    )
    body = {
        "version": result.version.to_dict(),
        "document_group_id": result.group.id,
        "is_new_group": result.is_new_group,
        "is_new_version": result.is_new_version,
        "version_number": result.version.version_number,
    }
    return jsonify(body), 201


@bp.get("/projects/<int:project_id>/documents")
@require_login
def list_project_documents(project_id: int):
    groups = _store().list_groups(project_id, _current_user())
    return jsonify({"document_groups": [_group_dict(grp, list(grp.versions)) for grp in groups]})


@bp.get("/documents/<int:group_id>/versions")
@require_login
def list_document_versions(group_id: int):
    versions = _store().list_versions(group_id, _current_user())
    return jsonify({"document_group_id": group_id, "versions": [v.to_dict() for v in versions]})


@bp.post("/documents/<int:group_id>/versions/<int:version_number>/restore")
@require_login
def restore_document_version(group_id: int, version_number: int):
    version = _store().restore_version(group_id, version_number, _current_user())
    return jsonify({"message": f"Version {version_number} restored as latest.", "version": version.to_dict()})


@bp.delete("/documents/<int:group_id>/versions/<int:version_number>")
@require_login
def delete_document_version(group_id: int, version_number: int):
    _store().delete_version(group_id, version_number, _current_user())
    return jsonify({"message": f"Version {version_number} deleted successfully."})


@bp.delete("/documents/<int:group_id>")
@require_login
def delete_document_group(group_id: int):
    _store().delete_group(group_id, _current_user())
    return jsonify({"message": "Document and all versions deleted successfully."})


@bp.get("/download/<int:version_id>")
@require_login
def download_version(version_id: int):
    version, url = _store().download_url(version_id, _current_user())
    if version.storage_provider == StorageProvider.LOCAL.value:
        url = f"{url}?{urlencode({'download': '1', 'filename': version.original_filename})}"
    return redirect(url, 302)


@bp.get("/preview/<int:version_id>")
@require_login
def preview_version(version_id: int):
    _version, url = _store().preview_url(version_id, _current_user())
    return redirect(url, 302)


@bp.get("/storage/<path:key>")
@require_login
def serve_local_object(key: str):
    """Direct URL target of the local storage provider."""
    storage = storage_for_provider(StorageProvider.LOCAL, current_app.config)
    try:
        if not storage.exists(key):
            abort(404)
        fobj = storage.open(key)
    except (OSError, StorageError):
        current_app.logger.warning("Local object unreadable: %s", key)
        abort(404)

    as_attachment = (request.args.get("download") or "") in _TRUTHY
    download_name = secure_filename(request.args.get("filename") or "") or key.rsplit("/", 1)[-1]
    return send_file(fobj, as_attachment=as_attachment, download_name=download_name, max_age=0)

"""
Versioned document store.

Each upload becomes a new DocumentVersion of a DocumentGroup. Exactly one version
per group is the latest; every transition that moves the flag (upload, restore,
delete) runs in one transaction holding a row lock on the group, and byte
transfers to the storage backend happen outside that transaction.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from werkzeug.utils import secure_filename

from app.pixelforge.audit import DOC_DELETE_GROUP, DOC_DELETE_VERSION, DOC_RESTORE, DOC_UPLOAD, record_event
from app.pixelforge.errors import (
    CANNOT_DELETE_ONLY_VERSION,
    FILE_TOO_LARGE,
    MISSING_FILE,
    NOT_PREVIEWABLE,
    UNSUPPORTED_TYPE,
    AuthorizationError,
    ConsistencyError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from app.pixelforge.models import Project
from app.pixelforge.modules.documents.models import DocumentGroup, DocumentVersion
from app.pixelforge.rbac import ProjectMembership, can_delete_group, can_delete_version, can_read, can_write
from app.pixelforge.storage import StorageBackend, StoredObject, storage_for_provider, storage_from_config

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.pixelforge.models import User

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

ALLOWED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "image/png",
        "image/jpg",
        "image/jpeg",
    }
)

PREVIEWABLE_MIME_TYPES = frozenset({"application/pdf", "text/plain"})

OCTET_STREAM = "application/octet-stream"


def normalize_mime(raw_mime: str | None) -> str:
    if not raw_mime:
        return OCTET_STREAM
    base = raw_mime.split(";", 1)[0].strip().lower()
    return base or OCTET_STREAM


def is_previewable(mime_type: str | None) -> bool:
    mime = normalize_mime(mime_type)
    return mime.startswith("image/") or mime in PREVIEWABLE_MIME_TYPES


def build_storage_filename(version_number: int, original_filename: str) -> str:
    """Storage-internal name: v{n}_{epoch_ms}_{uuid}.{ext}."""
    safe = secure_filename(original_filename or "")
    ext = safe.rsplit(".", 1)[-1].lower() if "." in safe else ""
    stem = f"v{version_number}_{int(time.time() * 1000)}_{uuid.uuid4()}"
    return f"{stem}.{ext}" if ext else stem


def build_storage_folder(project_id: int, group_id: int) -> str:
    return f"projects/{project_id}/documents/{group_id}"


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    version: DocumentVersion
    group: DocumentGroup
    is_new_group: bool

    @property
    def is_new_version(self) -> bool:
        return not self.is_new_group


class VersionedDocumentStore:
    def __init__(self, s: "Session", config: dict, storage: StorageBackend | None = None) -> None:
        self.s = s
        self.config = config
        # Receives new uploads; existing versions resolve their own backend.
        self.storage = storage or storage_from_config(config)
        self.max_file_size = int(config.get("MAX_FILE_SIZE") or DEFAULT_MAX_FILE_SIZE)

    # ------------------------------------------------------------------ helpers

    def _backend(self, provider: str) -> StorageBackend:
        if provider == self.storage.provider.value:
            return self.storage
        return storage_for_provider(provider, self.config)

    def _get_project(self, project_id: int) -> Project:
        project = self.s.get(Project, project_id)
        if not project:
            raise NotFoundError("Project not found.")
        return project

    def _get_group(self, group_id: int) -> DocumentGroup:
        group = self.s.get(DocumentGroup, group_id)
        if not group:
            raise NotFoundError("Document group not found.")
        return group

    def _membership(self, project_id: int) -> ProjectMembership:
        return ProjectMembership.from_project(self._get_project(project_id))

    def _lock_group(self, group_id: int) -> DocumentGroup:
        stmt = (
            select(DocumentGroup)
            .where(DocumentGroup.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        group = self.s.execute(stmt).scalar_one_or_none()
        if not group:
            raise NotFoundError("Document group not found.")
        return group

    def _versions(self, group_id: int) -> list[DocumentVersion]:
        stmt = (
            select(DocumentVersion)
            .where(DocumentVersion.document_group_id == group_id)
            .order_by(DocumentVersion.version_number.desc())
            .execution_options(populate_existing=True)
        )
        return list(self.s.execute(stmt).scalars())

    def _find_version(self, group_id: int, version_number: int) -> DocumentVersion | None:
        stmt = select(DocumentVersion).where(
            DocumentVersion.document_group_id == group_id,
            DocumentVersion.version_number == version_number,
        ).execution_options(populate_existing=True)
        return self.s.execute(stmt).scalar_one_or_none()

    def _next_version_number(self, group: DocumentGroup) -> int:
        current_max = self.s.execute(
            select(func.max(DocumentVersion.version_number)).where(DocumentVersion.document_group_id == group.id)
        ).scalar()
        return max(current_max or 0, group.last_version_number or 0) + 1

    def _reserve_version_number(self, group_id: int) -> int:
        """
        Claims the next number under the group lock and commits before the upload, so the
        storage filename and tag always match the row inserted afterwards. A number whose
        upload fails stays burned.
        """
        try:
            group = self._lock_group(group_id)
            number = self._next_version_number(group)
            group.last_version_number = number
            self.s.commit()
        except Exception:
            self.s.rollback()
            raise
        return number

    def _assert_single_latest(self, group_id: int) -> None:
        count = self.s.execute(
            select(func.count(DocumentVersion.id)).where(
                DocumentVersion.document_group_id == group_id,
                DocumentVersion.is_latest.is_(True),
            )
        ).scalar_one()
        if count != 1:
            raise ConsistencyError(f"Document group {group_id} has {count} latest versions after write.")

    def _delete_object_quietly(self, provider: str, path: str | None) -> None:
        """Best-effort: failures are logged and left for out-of-band cleanup."""
        if not path:
            logger.warning("No storage path recorded (provider=%s); nothing to delete", provider)
            return
        try:
            self._backend(provider).delete(path)
        except StorageError as e:
            logger.warning("Storage delete failed (provider=%s path=%s): %s", provider, path, e)

    def _resolve_group(self, project_id: int, name: str, group_id: int | None) -> tuple[DocumentGroup, bool]:
        if group_id is not None:
            group = self.s.get(DocumentGroup, group_id)
            if not group or group.project_id != project_id:
                raise NotFoundError("Document group not found.")
            return group, False

        existing = self.s.execute(
            select(DocumentGroup)
            .where(DocumentGroup.project_id == project_id, DocumentGroup.name == name)
            .order_by(DocumentGroup.id.asc())
            .limit(1)
        ).scalar_one_or_none()
        if existing:
            return existing, False

        group = DocumentGroup(project_id=project_id, name=name)
        self.s.add(group)
        self.s.flush()
        return group, True

    def _discard_empty_group(self, group_id: int) -> None:
        group = self.s.get(DocumentGroup, group_id)
        if group is not None and not self._versions(group_id):
            self.s.delete(group)
            self.s.commit()

    def validate_upload(self, upload: UploadedFile | None) -> str:
        """Returns the normalised MIME type or raises ValidationError."""
        if upload is None or not (upload.filename or "").strip():
            raise ValidationError("Project ID and file are required.", code=MISSING_FILE)
        if upload.size > self.max_file_size:
            raise ValidationError(
                f"File size must be less than {self.max_file_size / 1024 / 1024:g}MB.",
                code=FILE_TOO_LARGE,
            )
        mime = normalize_mime(upload.content_type)
        if mime not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                "Invalid file type. Only PDF, DOC, DOCX, TXT, PNG, JPG, and JPEG files are allowed.",
                code=UNSUPPORTED_TYPE,
            )
        return mime

    # --------------------------------------------------------------- operations

    def upload_version(
        self,
        project_id: int,
        upload: UploadedFile,
        actor: "User",
        *,
        group_id: int | None = None,
        version_notes: str | None = None,
        replace_latest: bool = False,
    ) -> UploadResult:
        project = self._get_project(project_id)
        membership = ProjectMembership.from_project(project)
        if not can_write(actor.role, actor.id, membership):
            raise AuthorizationError("You don't have permission to upload files to this project.")

        mime = self.validate_upload(upload)
        original_filename = upload.filename.strip()

        group, is_new_group = self._resolve_group(project.id, original_filename, group_id)
        if replace_latest and not is_new_group and not can_delete_version(actor.role, actor.id, membership):
            self.s.rollback()
            raise AuthorizationError("You don't have permission to replace the latest version of this document.")

        # Persist a new group, then claim the number the stored object will be named after.
        self.s.commit()
        number = self._reserve_version_number(group.id)
        filename = build_storage_filename(number, original_filename)

        try:
            stored = self.storage.put(
                upload.data,
                filename,
                folder=build_storage_folder(project.id, group.id),
                tags=["pixelforge", "document", str(project.id), str(group.id), f"v{number}"],
                content_type=mime,
            )
        except StorageError:
            logger.exception("Upload failed (project=%s group=%s file=%s)", project.id, group.id, original_filename)
            if is_new_group:
                self._discard_empty_group(group.id)
            raise

        try:
            version, replaced = self._insert_version(
                group.id,
                number,
                stored,
                filename=filename,
                original_filename=original_filename,
                mime=mime,
                actor=actor,
                version_notes=(version_notes or "").strip() or None,
                replace_latest=replace_latest,
            )
        except Exception:
            self.s.rollback()
            self._delete_object_quietly(stored.provider.value, stored.path)
            if is_new_group:
                self._discard_empty_group(group.id)
            raise

        if replaced is not None:
            self._delete_object_quietly(replaced[0], replaced[1])

        self.s.refresh(group)
        logger.info(
            "Uploaded %s as version %s of group %s (project=%s new_group=%s)",
            original_filename, version.version_number, group.id, project.id, is_new_group,
        )
        return UploadResult(version=version, group=group, is_new_group=is_new_group)

    def _insert_version(
        self,
        group_id: int,
        number: int,
        stored: StoredObject,
        *,
        filename: str,
        original_filename: str,
        mime: str,
        actor: "User",
        version_notes: str | None,
        replace_latest: bool,
    ) -> tuple[DocumentVersion, tuple[str, str | None] | None]:
        group = self._lock_group(group_id)
        if self._find_version(group.id, number) is not None:
            raise ConsistencyError(f"Version {number} of group {group.id} already exists.")

        replaced: tuple[str, str | None] | None = None
        if replace_latest:
            current = self.s.execute(
                select(DocumentVersion).where(
                    DocumentVersion.document_group_id == group.id,
                    DocumentVersion.is_latest.is_(True),
                )
            ).scalar_one_or_none()
            if current is not None:
                replaced = (current.storage_provider, current.provider_path)
                self.s.delete(current)
                self.s.flush()
        else:
            self.s.execute(
                update(DocumentVersion)
                .where(DocumentVersion.document_group_id == group.id, DocumentVersion.is_latest.is_(True))
                .values(is_latest=False)
            )

        now = datetime.utcnow()
        version = DocumentVersion(
            document_group_id=group.id,
            version_number=number,
            filename=filename,
            original_filename=original_filename,
            file_size=stored.size,
            mime_type=mime,
            storage_provider=stored.provider.value,
            provider_file_id=stored.file_id,
            provider_url=stored.url,
            provider_path=stored.path,
            uploaded_by_id=actor.id,
            uploaded_at=now,
            version_notes=version_notes,
            is_latest=True,
        )
        self.s.add(version)
        group.last_version_number = max(group.last_version_number or 0, number)
        group.updated_at = now
        self.s.flush()
        self._assert_single_latest(group.id)

        record_event(
            self.s,
            actor=actor,
            action=DOC_UPLOAD,
            entity_type="DocumentVersion",
            entity_id=str(version.id),
            metadata={
                "project_id": group.project_id,
                "group_id": group.id,
                "version_number": number,
                "filename": original_filename,
                "size_bytes": stored.size,
                "storage_provider": stored.provider.value,
                "replaced_latest": replaced is not None,
            },
        )
        self.s.commit()
        return version, replaced

    def list_groups(self, project_id: int, actor: "User") -> list[DocumentGroup]:
        membership = self._membership(project_id)
        if not can_read(actor.role, actor.id, membership):
            raise AuthorizationError("You don't have permission to view documents for this project.")
        stmt = (
            select(DocumentGroup)
            .where(DocumentGroup.project_id == project_id)
            .order_by(DocumentGroup.updated_at.desc(), DocumentGroup.id.desc())
        )
        return list(self.s.execute(stmt).scalars())

    def list_versions(self, group_id: int, actor: "User") -> list[DocumentVersion]:
        group = self._get_group(group_id)
        if not can_read(actor.role, actor.id, self._membership(group.project_id)):
            raise AuthorizationError("You don't have permission to view this document's versions.")
        return self._versions(group.id)

    def restore_version(self, group_id: int, version_number: int, actor: "User") -> DocumentVersion:
        group = self._get_group(group_id)
        if not can_write(actor.role, actor.id, self._membership(group.project_id)):
            raise AuthorizationError("You don't have permission to restore this document version.")

        try:
            group = self._lock_group(group_id)
            target = self._find_version(group.id, version_number)
            if target is None:
                raise NotFoundError("Version not found.")

            others_latest = self.s.execute(
                select(func.count(DocumentVersion.id)).where(
                    DocumentVersion.document_group_id == group.id,
                    DocumentVersion.is_latest.is_(True),
                    DocumentVersion.id != target.id,
                )
            ).scalar_one()
            if target.is_latest and others_latest == 0:
                self.s.commit()
                return target

            self.s.execute(
                update(DocumentVersion)
                .where(DocumentVersion.document_group_id == group.id)
                .values(is_latest=False)
            )
            self.s.execute(update(DocumentVersion).where(DocumentVersion.id == target.id).values(is_latest=True))
            self.s.flush()
            self._assert_single_latest(group.id)

            record_event(
                self.s,
                actor=actor,
                action=DOC_RESTORE,
                entity_type="DocumentVersion",
                entity_id=str(target.id),
                metadata={"group_id": group.id, "version_number": version_number},
            )
            self.s.commit()
        except Exception:
            self.s.rollback()
            raise

        self.s.refresh(target)
        return target

    def delete_version(self, group_id: int, version_number: int, actor: "User") -> None:
        group = self._get_group(group_id)
        if not can_delete_version(actor.role, actor.id, self._membership(group.project_id)):
            raise AuthorizationError("You don't have permission to delete document versions.")

        # Metadata first, under the group lock; the object goes only once the row is gone.
        try:
            group = self._lock_group(group_id)
            target = self._find_version(group.id, version_number)
            if target is None:
                raise NotFoundError("Version not found.")
            if len(self._versions(group.id)) == 1:
                raise ValidationError(
                    "Cannot delete the only version of a document. Delete the entire document instead.",
                    code=CANNOT_DELETE_ONLY_VERSION,
                )

            was_latest = target.is_latest
            target_id = target.id
            locator = (target.storage_provider, target.provider_path)
            self.s.delete(target)
            self.s.flush()

            if was_latest:
                newest = self._versions(group.id)[0]
                newest.is_latest = True
                self.s.flush()
            self._assert_single_latest(group.id)

            record_event(
                self.s,
                actor=actor,
                action=DOC_DELETE_VERSION,
                entity_type="DocumentVersion",
                entity_id=str(target_id),
                metadata={"group_id": group.id, "version_number": version_number, "was_latest": was_latest},
            )
            self.s.commit()
        except Exception:
            self.s.rollback()
            raise
        self.s.expire(group, ["versions"])

        self._delete_object_quietly(*locator)

    def delete_group(self, group_id: int, actor: "User") -> None:
        group = self._get_group(group_id)
        if not can_delete_group(actor.role, actor.id, self._membership(group.project_id)):
            raise AuthorizationError("You don't have permission to delete this document.")

        try:
            group = self._lock_group(group_id)
            versions = self._versions(group.id)
            locators = [(v.storage_provider, v.provider_path) for v in versions]
            record_event(
                self.s,
                actor=actor,
                action=DOC_DELETE_GROUP,
                entity_type="DocumentGroup",
                entity_id=str(group.id),
                metadata={"project_id": group.project_id, "name": group.name, "versions": len(versions)},
            )
            self.s.delete(group)
            self.s.commit()
        except Exception:
            self.s.rollback()
            raise

        for provider, path in locators:
            self._delete_object_quietly(provider, path)

    # ------------------------------------------------------------ read helpers

    def get_version(self, version_id: int, actor: "User") -> DocumentVersion:
        version = self.s.get(DocumentVersion, version_id)
        if not version:
            raise NotFoundError("Document not found.")
        if not can_read(actor.role, actor.id, self._membership(version.group.project_id)):
            raise AuthorizationError("You don't have permission to access this document.")
        return version

    def direct_url(self, version: DocumentVersion) -> str:
        """URL of the stored object, resolved through the version's own provider."""
        try:
            url = self._backend(version.storage_provider).direct_url(version.provider_path)
        except StorageError as e:
            logger.error("Cannot resolve backend for version %s: %s", version.id, e)
            url = None
        url = url or version.provider_url
        if not url:
            raise NotFoundError("Document not available - missing storage information.")
        return url

    def download_url(self, version_id: int, actor: "User") -> tuple[DocumentVersion, str]:
        version = self.get_version(version_id, actor)
        return version, self.direct_url(version)

    def preview_url(self, version_id: int, actor: "User") -> tuple[DocumentVersion, str]:
        version = self.get_version(version_id, actor)
        if not is_previewable(version.mime_type):
            raise ValidationError("File type not previewable.", code=NOT_PREVIEWABLE)
        return version, self.direct_url(version)

"""
One-shot migration of the flat ``documents`` table into document groups and versions.

Legacy rows are grouped by (project_id, original_filename); each group becomes one
DocumentGroup whose versions follow upload order. Storage locators are copied as-is,
no bytes move. Every group commits on its own so one bad group does not abort the
batch; the result object carries the counts and error messages for the caller to
report.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from app.pixelforge.audit import DOC_MIGRATE, record_event
from app.pixelforge.modules.documents.models import DocumentGroup, DocumentVersion, LegacyDocument

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

INITIAL_VERSION_NOTE = "Migrated from legacy system - initial version"
LATER_VERSION_NOTE = "Migrated from legacy system - version {n}"
MIGRATION_NOTE_PREFIX = "Migrated from legacy system"

PartitionKey = tuple[int, str]


@dataclass
class MigrationResult:
    success: bool = True
    migrated_count: int = 0
    skipped_count: int = 0
    groups_created: int = 0
    errors: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.success = False


@dataclass(frozen=True)
class MigrationCounts:
    legacy_documents: int
    document_versions: int
    document_groups: int


def version_note(version_number: int) -> str:
    if version_number == 1:
        return INITIAL_VERSION_NOTE
    return LATER_VERSION_NOTE.format(n=version_number)


def load_legacy_documents(s: "Session") -> list[LegacyDocument]:
    """All flat records, oldest first (ties broken by id)."""
    stmt = select(LegacyDocument).order_by(LegacyDocument.uploaded_at.asc(), LegacyDocument.id.asc())
    return list(s.execute(stmt).scalars())


def partition_legacy_documents(docs: Iterable[LegacyDocument]) -> dict[PartitionKey, list[LegacyDocument]]:
    """Group by (project_id, original_filename), keeping the input order within each group."""
    partitions: dict[PartitionKey, list[LegacyDocument]] = {}
    for doc in docs:
        partitions.setdefault((doc.project_id, doc.original_filename), []).append(doc)
    return partitions


def _existing_group_id(s: "Session", project_id: int, name: str) -> int | None:
    stmt = select(DocumentGroup.id).where(DocumentGroup.project_id == project_id, DocumentGroup.name == name).limit(1)
    return s.execute(stmt).scalar_one_or_none()


def _is_migrated_group(s: "Session", group_id: int) -> bool:
    """True if any version of the group carries a migration note."""
    stmt = (
        select(DocumentVersion.id)
        .where(
            DocumentVersion.document_group_id == group_id,
            DocumentVersion.version_notes.like(f"{MIGRATION_NOTE_PREFIX}%"),
        )
        .limit(1)
    )
    return s.execute(stmt).first() is not None


def migrate_partition(s: "Session", project_id: int, name: str, docs: list[LegacyDocument]) -> DocumentGroup:
    """Build one group from chronologically ordered legacy rows. Does not commit."""
    if not docs:
        raise ValueError(f"No legacy documents for {name!r} in project {project_id}")

    group = DocumentGroup(
        project_id=project_id,
        name=name,
        last_version_number=len(docs),
        created_at=docs[0].uploaded_at,
        updated_at=docs[-1].uploaded_at,
    )
    s.add(group)
    s.flush()

    for i, doc in enumerate(docs):
        number = i + 1
        s.add(
            DocumentVersion(
                document_group_id=group.id,
                version_number=number,
                filename=doc.filename,
                original_filename=doc.original_filename,
                file_size=doc.file_size,
                mime_type=doc.mime_type,
                storage_provider=doc.storage_provider,
                provider_file_id=doc.provider_file_id,
                provider_url=doc.provider_url,
                provider_path=doc.provider_path,
                uploaded_by_id=doc.uploaded_by_id,
                uploaded_at=doc.uploaded_at,
                version_notes=version_note(number),
                is_latest=(i == len(docs) - 1),
            )
        )
    s.flush()

    record_event(
        s,
        actor=None,
        action=DOC_MIGRATE,
        entity_type="DocumentGroup",
        entity_id=str(group.id),
        metadata={"project_id": project_id, "name": name, "legacy_document_ids": [d.id for d in docs]},
    )
    return group


def migrate_legacy_documents(s: "Session") -> MigrationResult:
    """
    Migrate every legacy partition that has no group yet. Partitions already migrated by an
    earlier run are counted as skipped, so re-running is safe. A same-named group created
    by live uploads is left alone and reported as an error.
    """
    result = MigrationResult()

    try:
        docs = load_legacy_documents(s)
    except Exception as e:
        s.rollback()
        result.add_error(f"Migration failed: {e}")
        return result

    logger.info("Found %d legacy documents to migrate", len(docs))
    partitions = partition_legacy_documents(docs)

    for (project_id, name), group_docs in partitions.items():
        try:
            existing_id = _existing_group_id(s, project_id, name)
            if existing_id is not None and _is_migrated_group(s, existing_id):
                logger.info("Skipping %r in project %s: already migrated as group %s", name, project_id, existing_id)
                result.skipped_count += len(group_docs)
                continue
            if existing_id is not None:
                message = (
                    f'Document group "{name}" in project {project_id} already exists from uploads '
                    f"(group {existing_id}); {len(group_docs)} legacy documents not migrated"
                )
                logger.error(message)
                result.add_error(message)
                continue
            group = migrate_partition(s, project_id, name, group_docs)
            s.commit()
        except Exception as e:
            s.rollback()
            message = f'Failed to migrate document group "{name}" in project {project_id}: {e}'
            logger.error(message)
            result.add_error(message)
            continue

        result.groups_created += 1
        result.migrated_count += len(group_docs)
        logger.info("Migrated %r in project %s as group %s (%d versions)", name, project_id, group.id, len(group_docs))

    return result


def verify_migration(s: "Session") -> MigrationCounts:
    return MigrationCounts(
        legacy_documents=s.execute(select(func.count(LegacyDocument.id))).scalar_one(),
        document_versions=s.execute(select(func.count(DocumentVersion.id))).scalar_one(),
        document_groups=s.execute(select(func.count(DocumentGroup.id))).scalar_one(),
    )


def rollback_migration(s: "Session") -> MigrationCounts:
    """
    Delete all versioned data; the legacy table is left untouched. Returns the counts
    that were in place before the rollback. Storage objects are shared with the legacy
    rows and are not deleted.
    """
    before = verify_migration(s)
    s.execute(delete(DocumentVersion))
    s.execute(delete(DocumentGroup))
    s.commit()
    logger.warning(
        "Rolled back versioned documents: %d versions, %d groups deleted",
        before.document_versions, before.document_groups,
    )
    return before

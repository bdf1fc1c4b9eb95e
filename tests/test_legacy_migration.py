from datetime import datetime, timedelta

import pytest

from app.pixelforge.models import AuditEvent, Project, User
from app.pixelforge.modules.documents import migration
from app.pixelforge.modules.documents.migration import (
    INITIAL_VERSION_NOTE,
    migrate_legacy_documents,
    rollback_migration,
    verify_migration,
)
from app.pixelforge.modules.documents.models import DocumentGroup, DocumentVersion, LegacyDocument
from app.pixelforge.modules.documents.service import UploadedFile, VersionedDocumentStore

T0 = datetime(2024, 3, 1, 9, 0, 0)


def _legacy(project_id: int, user_id: int, name: str, uploaded_at: datetime, **kw) -> LegacyDocument:
    fields = dict(
        project_id=project_id,
        filename=f"{uploaded_at:%Y%m%d%H%M%S}_{name}",
        original_filename=name,
        file_size=100,
        mime_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        storage_provider="local",
        provider_path=f"legacy/{uploaded_at:%Y%m%d%H%M%S}_{name}",
        uploaded_by_id=user_id,
        uploaded_at=uploaded_at,
    )
    fields.update(kw)
    return LegacyDocument(**fields)


@pytest.fixture()
def legacy(session, seeded):
    other = Project(name="Zephyr", created_by_id=seeded.lead)
    session.add(other)
    session.flush()
    # inserted out of order; the migration orders by upload time
    session.add_all(
        [
            _legacy(seeded.project_id, seeded.dev, "spec.docx", T0 + timedelta(days=2)),
            _legacy(seeded.project_id, seeded.lead, "spec.docx", T0),
            _legacy(seeded.project_id, seeded.dev, "spec.docx", T0 + timedelta(days=1)),
            _legacy(seeded.project_id, seeded.dev, "plan.pdf", T0, mime_type="application/pdf"),
            _legacy(other.id, seeded.lead, "spec.docx", T0, storage_provider="s3", provider_url="https://cdn.example.com/x"),
        ]
    )
    session.commit()
    return other.id


def _group(session, project_id: int, name: str) -> DocumentGroup:
    return session.query(DocumentGroup).filter(DocumentGroup.project_id == project_id, DocumentGroup.name == name).one()


def _versions(session, group_id: int) -> list[DocumentVersion]:
    return (
        session.query(DocumentVersion)
        .filter(DocumentVersion.document_group_id == group_id)
        .order_by(DocumentVersion.version_number)
        .all()
    )


def test_same_name_documents_become_one_group_in_upload_order(session, seeded, legacy):
    result = migrate_legacy_documents(session)

    assert result.success
    assert result.errors == []
    assert result.migrated_count == 5
    assert result.groups_created == 3
    assert result.skipped_count == 0

    g = _group(session, seeded.project_id, "spec.docx")
    versions = _versions(session, g.id)
    assert [v.version_number for v in versions] == [1, 2, 3]
    assert [v.is_latest for v in versions] == [False, False, True]
    assert [v.uploaded_at for v in versions] == [T0, T0 + timedelta(days=1), T0 + timedelta(days=2)]
    assert versions[0].uploaded_by_id == seeded.lead
    assert versions[0].version_notes == INITIAL_VERSION_NOTE
    assert versions[2].version_notes == "Migrated from legacy system - version 3"
    assert g.last_version_number == 3
    assert g.created_at == T0
    assert g.updated_at == T0 + timedelta(days=2)

    # locators are copied unchanged
    other = _versions(session, _group(session, legacy, "spec.docx").id)
    assert len(other) == 1
    assert other[0].is_latest is True
    assert other[0].storage_provider == "s3"
    assert other[0].provider_url == "https://cdn.example.com/x"

    assert session.query(AuditEvent).filter(AuditEvent.action == "doc.migrate").count() == 3


def test_verify_counts(session, legacy):
    before = verify_migration(session)
    assert (before.legacy_documents, before.document_versions, before.document_groups) == (5, 0, 0)

    migrate_legacy_documents(session)
    after = verify_migration(session)
    assert (after.legacy_documents, after.document_versions, after.document_groups) == (5, 5, 3)


def test_rerun_skips_existing_groups(session, legacy):
    migrate_legacy_documents(session)
    again = migrate_legacy_documents(session)

    assert again.success
    assert again.groups_created == 0
    assert again.migrated_count == 0
    assert again.skipped_count == 5
    assert session.query(DocumentVersion).count() == 5


def test_rollback_deletes_versioned_data_only(session, legacy):
    migrate_legacy_documents(session)
    before = rollback_migration(session)

    assert before.document_versions == 5
    assert before.document_groups == 3
    assert session.query(DocumentVersion).count() == 0
    assert session.query(DocumentGroup).count() == 0
    assert session.query(LegacyDocument).count() == 5


def test_one_failing_group_does_not_abort_the_batch(session, seeded, legacy, monkeypatch):
    real = migration.migrate_partition

    def flaky(s, project_id, name, docs):
        if name == "plan.pdf":
            raise RuntimeError("bad row")
        return real(s, project_id, name, docs)

    monkeypatch.setattr(migration, "migrate_partition", flaky)
    result = migrate_legacy_documents(session)

    assert not result.success
    assert len(result.errors) == 1
    assert "plan.pdf" in result.errors[0]
    assert result.groups_created == 2
    assert result.migrated_count == 4
    assert session.query(DocumentGroup).filter(DocumentGroup.name == "plan.pdf").count() == 0

    # fixed on the next run
    monkeypatch.setattr(migration, "migrate_partition", real)
    retry = migrate_legacy_documents(session)
    assert retry.success
    assert retry.groups_created == 1
    assert retry.skipped_count == 4


def test_uploads_after_migration_continue_the_group(app, session, seeded, legacy):
    migrate_legacy_documents(session)
    store = VersionedDocumentStore(session, app.config)
    dev = session.get(User, seeded.dev)

    upload = UploadedFile(
        filename="spec.docx",
        content_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        data=b"PK",
    )
    r = store.upload_version(seeded.project_id, upload, dev)
    assert not r.is_new_group
    assert r.version.version_number == 4
    flags = [(v.version_number, v.is_latest) for v in store.list_versions(r.group.id, dev)]
    assert flags == [(4, True), (3, False), (2, False), (1, False)]


def test_group_created_by_uploads_is_reported_not_skipped(app, session, seeded, legacy):
    store = VersionedDocumentStore(session, app.config)
    dev = session.get(User, seeded.dev)
    live = store.upload_version(
        seeded.project_id, UploadedFile(filename="plan.pdf", content_type="application/pdf", data=b"%PDF"), dev
    ).group

    result = migrate_legacy_documents(session)

    assert not result.success
    assert len(result.errors) == 1
    assert "plan.pdf" in result.errors[0]
    assert "already exists from uploads" in result.errors[0]
    assert result.groups_created == 2
    assert result.migrated_count == 4
    assert result.skipped_count == 0
    # the live group is left as it was
    assert [(v.version_number, v.is_latest) for v in _versions(session, live.id)] == [(1, True)]

    again = migrate_legacy_documents(session)
    assert not again.success
    assert again.skipped_count == 4
    assert again.groups_created == 0
    assert len(again.errors) == 1
    assert "plan.pdf" in again.errors[0]


def test_script_entry_point(app, session, legacy, capsys):
    from scripts import migrate_documents

    url = app.config["DATABASE_URL"]
    assert migrate_documents.main(["--database-url", url]) == 0
    assert "Groups created:     3" in capsys.readouterr().out

    assert migrate_documents.main(["--database-url", url, "--verify"]) == 0
    assert migrate_documents.main(["--database-url", url, "--rollback"]) == 1
    assert migrate_documents.main(["--database-url", url, "--rollback", "--confirm"]) == 0
    assert migrate_documents.main(["--database-url", url, "--verify"]) == 1

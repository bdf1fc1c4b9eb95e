from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.pixelforge.models import Base


class DocumentGroup(Base):
    """One logical, named document within a project."""

    __tablename__ = "document_groups"
    __table_args__ = (
        Index("idx_document_groups_project_name", "project_id", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    # Filename at first upload; uploads with the same name in the project append versions here.
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Highest version number ever allocated; numbers of deleted versions are not handed out again.
    last_version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    versions: Mapped[list["DocumentVersion"]] = relationship(
        "DocumentVersion",
        back_populates="group",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentVersion.version_number.desc()",
    )

    @property
    def latest_version(self) -> "DocumentVersion | None":
        for v in self.versions:
            if v.is_latest:
                return v
        return None


class DocumentVersion(Base):
    """Immutable snapshot of a DocumentGroup. Only ``is_latest`` changes after insert."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_group_id", "version_number", name="uq_document_group_version"),
        # At most one latest row per group; "at least one" is enforced by the store.
        Index(
            "uq_document_versions_one_latest",
            "document_group_id",
            unique=True,
            postgresql_where=text("is_latest"),
            sqlite_where=text("is_latest = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_group_id: Mapped[int] = mapped_column(
        ForeignKey("document_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)  # storage-internal
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")

    # "local" | "s3"; each version keeps the provider it was written with
    storage_provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_file_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    provider_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    provider_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    uploaded_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    version_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_latest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    group: Mapped[DocumentGroup] = relationship(
        "DocumentGroup",
        back_populates="versions",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_group_id": self.document_group_id,
            "version_number": self.version_number,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "storage_provider": self.storage_provider,
            "provider_url": self.provider_url,
            "uploaded_by_id": self.uploaded_by_id,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "version_notes": self.version_notes,
            "is_latest": self.is_latest,
        }


class LegacyDocument(Base):
    """
    Pre-versioning flat document table. Read by the migration only; never written here.
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)

    storage_provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_file_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    provider_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    provider_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    uploaded_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

"""FileRecord model - manuscript metadata (actual bytes live in the blob store)."""
import uuid
from datetime import datetime
from sqlalchemy import String, Text, BigInteger, Boolean, Integer, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from manuscript_vault.models.base import Base, TimestampMixin, OwnerMixin

# uploaded -> processing -> completed | failed
FILE_STATUSES = ("uploaded", "processing", "completed", "failed")


class FileRecord(Base, TimestampMixin, OwnerMixin):
    __tablename__ = "file_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    status: Mapped[str] = mapped_column(String(20), default="uploaded", index=True)
    input_blob_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    output_files: Mapped[list["OutputFile"]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="OutputFile.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_file_records_status_created", "status", "created_at"),
    )

    @property
    def output_size(self) -> int:
        return sum(o.file_size or 0 for o in self.output_files)

    @property
    def total_size(self) -> int:
        """Input bytes plus every output's bytes."""
        return (self.file_size or 0) + self.output_size


class OutputFile(Base):
    __tablename__ = "output_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("file_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    blob_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    stored_in_blob_store: Mapped[bool] = mapped_column(Boolean, default=True)

    record: Mapped["FileRecord"] = relationship(back_populates="output_files")

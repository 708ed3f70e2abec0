"""Blob model - raw bytes for the database-backed blob store."""
import uuid
from datetime import datetime
from sqlalchemy import String, BigInteger, LargeBinary, DateTime, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, deferred
from manuscript_vault.models.base import Base


class Blob(Base):
    __tablename__ = "blobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    filename: Mapped[str | None] = mapped_column(String(500), nullable=True)
    length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Deferred so enumeration never pulls payloads
    data: Mapped[bytes] = deferred(mapped_column(LargeBinary, nullable=False))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

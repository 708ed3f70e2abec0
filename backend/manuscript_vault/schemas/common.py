"""Shared Pydantic schemas."""
from manuscript_vault.schemas.base import ByteCount, CamelModel


class DeleteResponse(CamelModel):
    deleted: bool = True
    id: str = ""
    freed_size: ByteCount = 0

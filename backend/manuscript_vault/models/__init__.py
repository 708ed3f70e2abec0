"""Import all models so SQLAlchemy metadata knows about them."""
from manuscript_vault.models.base import Base
from manuscript_vault.models.blob import Blob
from manuscript_vault.models.file_record import FileRecord, OutputFile

__all__ = ["Base", "Blob", "FileRecord", "OutputFile"]

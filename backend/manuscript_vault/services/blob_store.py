"""Blob store abstraction. Database table by default, local filesystem for dev.

Blobs are opaque byte payloads addressed by a string id. Every adapter
supports store, fetch, delete and full enumeration with per-blob length,
which is all the quota engine needs.
"""
import stat
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os
from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from manuscript_vault.config import Settings, settings
from manuscript_vault.exceptions import BlobDeleteFailed, BlobNotFound, StoreUnavailable
from manuscript_vault.models.blob import Blob


@dataclass(frozen=True)
class BlobInfo:
    blob_id: str
    length: int
    filename: str | None = None


class BlobStore(ABC):
    """Interface consumed by the upload path, the conversion worker and the quota engine."""

    @abstractmethod
    async def store(self, data: bytes, filename: str | None = None) -> str:
        """Persist bytes and return the new blob id."""

    @abstractmethod
    async def fetch(self, blob_id: str) -> bytes:
        """Return the bytes of a blob. Raises BlobNotFound."""

    @abstractmethod
    async def delete(self, blob_id: str) -> int:
        """Delete a blob and return its length. Raises BlobNotFound or BlobDeleteFailed."""

    @abstractmethod
    async def list_all(self) -> list[BlobInfo]:
        """Enumerate every blob with its length. Raises StoreUnavailable."""


class DatabaseBlobStore(BlobStore):
    """Blobs kept in the `blobs` table.

    Each call opens its own short session and commits on its own, so blob
    operations never share a transaction with the caller's record session.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _parse_id(blob_id: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(blob_id))
        except ValueError:
            raise BlobNotFound(blob_id)

    async def store(self, data: bytes, filename: str | None = None) -> str:
        blob_id = uuid.uuid4()
        blob = Blob(id=blob_id, filename=filename, length=len(data), data=data)
        try:
            async with self.session_factory() as db:
                db.add(blob)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not store blob: {e}") from e
        return str(blob_id)

    async def fetch(self, blob_id: str) -> bytes:
        key = self._parse_id(blob_id)
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(Blob.data).where(Blob.id == key))
                data = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not fetch blob {blob_id}: {e}") from e
        if data is None:
            raise BlobNotFound(blob_id)
        return data

    async def delete(self, blob_id: str) -> int:
        key = self._parse_id(blob_id)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(Blob).where(Blob.id == key).returning(Blob.length)
                )
                length = result.scalar_one_or_none()
                await db.commit()
        except SQLAlchemyError as e:
            raise BlobDeleteFailed(blob_id, e) from e
        if length is None:
            raise BlobNotFound(blob_id)
        return length

    async def list_all(self) -> list[BlobInfo]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(Blob.id, Blob.length, Blob.filename))
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not enumerate blobs: {e}") from e
        return [BlobInfo(blob_id=str(r.id), length=r.length or 0, filename=r.filename) for r in rows]


class LocalBlobStore(BlobStore):
    """Blobs kept as files named by blob id under a base directory."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, blob_id: str) -> Path:
        # Ids are uuid hex strings; anything else cannot name a blob here
        if not blob_id or Path(blob_id).name != blob_id:
            raise BlobNotFound(blob_id)
        return self.base_path / blob_id

    async def store(self, data: bytes, filename: str | None = None) -> str:
        blob_id = uuid.uuid4().hex
        try:
            async with aiofiles.open(self.base_path / blob_id, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StoreUnavailable(f"Could not store blob: {e}") from e
        return blob_id

    async def fetch(self, blob_id: str) -> bytes:
        path = self._path(blob_id)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise BlobNotFound(blob_id)
        except OSError as e:
            raise StoreUnavailable(f"Could not fetch blob {blob_id}: {e}") from e

    async def delete(self, blob_id: str) -> int:
        path = self._path(blob_id)
        try:
            length = (await aiofiles.os.stat(path)).st_size
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise BlobNotFound(blob_id)
        except OSError as e:
            raise BlobDeleteFailed(blob_id, e) from e
        return length

    async def list_all(self) -> list[BlobInfo]:
        try:
            names = await aiofiles.os.listdir(self.base_path)
        except OSError as e:
            raise StoreUnavailable(f"Could not enumerate blobs: {e}") from e
        blobs = []
        for name in names:
            try:
                st = await aiofiles.os.stat(self.base_path / name)
            except FileNotFoundError:
                # Deleted between listing and stat
                continue
            except OSError as e:
                raise StoreUnavailable(f"Could not enumerate blobs: {e}") from e
            if not stat.S_ISREG(st.st_mode):
                continue
            blobs.append(BlobInfo(blob_id=name, length=st.st_size))
        return blobs


def create_blob_store(config: Settings = settings, session_factory: async_sessionmaker | None = None) -> BlobStore:
    """Build the blob store selected by BLOB_STORAGE_TYPE."""
    if config.BLOB_STORAGE_TYPE == "database":
        if session_factory is None:
            from manuscript_vault.database import async_session
            session_factory = async_session
        return DatabaseBlobStore(session_factory)
    if config.BLOB_STORAGE_TYPE == "local":
        return LocalBlobStore(config.BLOB_STORAGE_PATH)
    raise ValueError(f"Unknown storage type: {config.BLOB_STORAGE_TYPE}")


blob_store = create_blob_store()


def get_blob_store() -> BlobStore:
    """FastAPI dependency returning the process-wide blob store."""
    return blob_store

"""Shared pytest fixtures for the manuscript vault tests.

Provides a per-test SQLite database, a database-backed blob store, small
storage limits (1000 bytes capacity) that make quota arithmetic easy to
read, a record factory, and an httpx client bound to the FastAPI app.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BLOB_STORAGE_TYPE", "database")
os.environ.setdefault("CONVERSION_WORKER_ENABLED", "false")

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from manuscript_vault.database import get_db, get_session_factory
from manuscript_vault.main import app
from manuscript_vault.models import Base
from manuscript_vault.models.file_record import FileRecord, OutputFile
from manuscript_vault.services.blob_store import DatabaseBlobStore, get_blob_store
from manuscript_vault.services.storage.limits import StorageLimits, get_storage_limits

ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
USER_HEADERS = {"X-User-Id": "alice", "X-User-Role": "user"}


def days_ago(days: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_wal(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store(session_factory):
    return DatabaseBlobStore(session_factory)


@pytest.fixture
def limits():
    return StorageLimits(
        max_bytes=1000,
        warning_fraction=0.85,
        cleanup_fraction=0.90,
        critical_fraction=0.95,
        target_after_cleanup_fraction=0.70,
        stale_after_days=30,
        cleanup_batch_size=100,
    )


@pytest.fixture
def make_record(db, blob_store):
    """Factory storing real blobs and a committed FileRecord that references them.

    `outputs` is a list of output sizes in bytes.
    """
    async def _make(
        size: int = 100,
        status: str = "completed",
        created_at: datetime | None = None,
        processing_started_at: datetime | None = None,
        outputs: list[int] | None = None,
        uploaded_by: str = "alice",
        file_type: str = "pdf",
        name: str | None = None,
    ) -> FileRecord:
        name = name or f"{status}-{size}.{file_type}"
        input_blob_id = await blob_store.store(b"i" * size, name) if size else None
        output_files = []
        for position, out_size in enumerate(outputs or []):
            out_name = f"{name}.out{position}"
            out_blob_id = await blob_store.store(b"o" * out_size, out_name)
            output_files.append(OutputFile(
                position=position, file_name=out_name, file_size=out_size,
                blob_id=out_blob_id, stored_in_blob_store=True,
            ))
        record = FileRecord(
            original_name=name,
            file_type=file_type,
            file_size=size,
            status=status,
            input_blob_id=input_blob_id,
            uploaded_by=uploaded_by,
            output_files=output_files,
            created_at=created_at or datetime.now(timezone.utc),
            processing_started_at=processing_started_at,
        )
        db.add(record)
        await db.commit()
        return record

    return _make


@pytest.fixture
async def client(session_factory, blob_store, limits):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_storage_limits] = lambda: limits
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

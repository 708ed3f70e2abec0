"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from manuscript_vault.config import settings
from manuscript_vault.database import engine, get_db
from manuscript_vault.exceptions import StoreUnavailable
from manuscript_vault.models import Base
from manuscript_vault.services.blob_store import blob_store
from manuscript_vault.services.storage import UsageAccountant
from manuscript_vault.services.storage.limits import storage_limits
from manuscript_vault.services.storage.usage import STATUS_NORMAL

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _log_storage_usage() -> None:
    try:
        snapshot = await UsageAccountant(blob_store, storage_limits).compute_usage()
    except StoreUnavailable as e:
        logger.warning(f"Blob store usage unavailable at startup: {e}")
        return
    message = (
        f"Blob store usage {snapshot.usage_percent:.2f}% "
        f"({snapshot.file_count} blobs, status={snapshot.status})"
    )
    if snapshot.status == STATUS_NORMAL:
        logger.info(message)
    else:
        logger.warning(message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, report blob store usage, start the conversion worker."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await _log_storage_usage()

    worker_task = None
    if settings.CONVERSION_WORKER_ENABLED:
        from manuscript_vault.services.conversion_worker import worker_loop
        worker_task = asyncio.create_task(worker_loop())

    yield

    if worker_task:
        worker_task.cancel()
    await engine.dispose()


app = FastAPI(
    title="Manuscript Vault API",
    version="1.0.0",
    description="Manuscript uploads, conversion outputs and blob store quota management.",
    lifespan=lifespan,
)

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Verify database connectivity and report the blob store quota status."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "error", "database": str(e), "storage": None}

    try:
        snapshot = await UsageAccountant(blob_store, storage_limits).compute_usage()
        storage = snapshot.status
    except StoreUnavailable as e:
        logger.warning(f"Health check could not read blob store usage: {e}")
        storage = "unavailable"
    return {"status": "ok", "database": "connected", "storage": storage}


from manuscript_vault.routes.files import router as files_router
from manuscript_vault.routes.storage import router as storage_router
app.include_router(files_router)
app.include_router(storage_router)

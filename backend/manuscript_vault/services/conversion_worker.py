"""Background conversion worker.

Polls file_records for 'uploaded' manuscripts and converts them.
Runs as an asyncio task within the FastAPI process.

The worker is the only writer of record status:
uploaded -> processing -> completed | failed. Records it never finishes
(process crash mid-conversion) stay in 'processing' and are reclaimed by
storage cleanup once they pass the staleness window.
"""
import asyncio
import logging
import shlex
import tempfile
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from manuscript_vault.config import settings
from manuscript_vault.database import async_session
from manuscript_vault.exceptions import ConversionError, StorageError
from manuscript_vault.models.file_record import FileRecord, OutputFile
from manuscript_vault.services.blob_store import BlobStore, blob_store as default_blob_store

logger = logging.getLogger(__name__)


@dataclass
class ConvertedFile:
    file_name: str
    data: bytes


Converter = Callable[[str, bytes], Awaitable[list[ConvertedFile]]]

# Converter registry - add new file types here
CONVERTERS: dict[str, Converter] = {}


def register_converter(*file_types: str):
    """Decorator to register a converter for one or more file types."""
    def decorator(func):
        for file_type in file_types:
            CONVERTERS[file_type] = func
        return func
    return decorator


def safe_error_message(e: Exception, fallback: str = "Conversion interrupted") -> str:
    """Extract a meaningful error message, falling back to the exception class name."""
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg


async def convert(file_type: str, original_name: str, data: bytes) -> list[ConvertedFile]:
    """Dispatch to the converter registered for file_type."""
    converter = CONVERTERS.get(file_type)
    if not converter:
        raise ConversionError(f"No converter registered for file type: {file_type}")
    return await converter(original_name, data)


async def process_next_upload(
    session_factory: async_sessionmaker = async_session,
    blob_store: BlobStore = default_blob_store,
) -> uuid.UUID | None:
    """Convert the oldest uploaded record, if any. Returns the id of the record processed."""
    async with session_factory() as db:
        result = await db.execute(
            select(FileRecord)
            .where(FileRecord.status == "uploaded")
            .order_by(FileRecord.created_at)
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if not record:
            return None

        record_id = record.id
        logger.info(f"Processing file {record_id} ({record.original_name}, type={record.file_type})")
        record.status = "processing"
        record.processing_started_at = datetime.now(timezone.utc)
        await db.commit()

        stored: list[str] = []
        try:
            if not record.input_blob_id:
                raise ConversionError("Input file is missing")
            data = await blob_store.fetch(record.input_blob_id)
            outputs = await convert(record.file_type, record.original_name, data)

            for position, output in enumerate(outputs):
                blob_id = await blob_store.store(output.data, output.file_name)
                stored.append(blob_id)
                record.output_files.append(OutputFile(
                    position=position,
                    file_name=output.file_name,
                    file_size=len(output.data),
                    blob_id=blob_id,
                    stored_in_blob_store=True,
                ))
            record.status = "completed"
            record.processing_completed_at = datetime.now(timezone.utc)
            await db.commit()
            logger.info(f"File {record_id} completed with {len(outputs)} output(s)")
            return record_id

        except Exception as e:
            logger.error(f"File {record_id} failed: {e}")
            logger.error(traceback.format_exc())
            await db.rollback()
            await _discard_blobs(blob_store, stored)
            await _mark_failed(session_factory, record_id, e)
            return record_id


async def _discard_blobs(blob_store: BlobStore, blob_ids: list[str]) -> None:
    for blob_id in blob_ids:
        try:
            await blob_store.delete(blob_id)
        except StorageError as err:
            # Left for the orphan scanner
            logger.warning(f"Could not discard output blob {blob_id}: {err}")


async def _mark_failed(session_factory: async_sessionmaker, record_id, error: Exception) -> None:
    """Mark a record failed in a fresh session.

    Retry up to 3 times so a transient DB error doesn't leave the record
    stuck in 'processing'.
    """
    for attempt in range(3):
        try:
            async with session_factory() as db:
                rec = await db.get(FileRecord, record_id)
                if rec and rec.status == "processing":
                    rec.status = "failed"
                    rec.error_message = safe_error_message(error)[:2000]
                    rec.processing_completed_at = datetime.now(timezone.utc)
                    await db.commit()
            return
        except Exception as db_err:
            logger.error(
                f"Failed to mark file {record_id} as failed "
                f"(attempt {attempt + 1}/3): {db_err}"
            )
            if attempt < 2:
                await asyncio.sleep(1)


async def worker_loop(
    session_factory: async_sessionmaker = async_session,
    blob_store: BlobStore = default_blob_store,
    poll_interval: float | None = None,
):
    """Main worker loop. Drains uploaded files, then sleeps for the poll interval."""
    interval = poll_interval if poll_interval is not None else settings.CONVERSION_POLL_INTERVAL
    logger.info("Conversion worker started")
    while True:
        try:
            while await process_next_upload(session_factory, blob_store):
                pass
        except Exception as e:
            logger.error(f"Worker loop error: {e}")

        await asyncio.sleep(interval)


# ── Converters ───────────────────────────────────────────────────

@register_converter("pdf", "epub")
async def convert_with_external_command(original_name: str, data: bytes) -> list[ConvertedFile]:
    """Run CONVERTER_COMMAND on the manuscript and collect every file it writes.

    The command is a template with {input} and {output_dir} placeholders.
    """
    if not settings.CONVERTER_COMMAND:
        raise ConversionError("No converter command configured")

    with tempfile.TemporaryDirectory(prefix="manuscript-") as workdir:
        input_path = Path(workdir) / Path(original_name).name
        output_dir = Path(workdir) / "out"
        output_dir.mkdir()
        input_path.write_bytes(data)

        args = [
            part.format(input=str(input_path), output_dir=str(output_dir))
            for part in shlex.split(settings.CONVERTER_COMMAND)
        ]
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=settings.CONVERTER_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ConversionError(f"Converter timed out after {settings.CONVERTER_TIMEOUT}s")

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[-500:]
            raise ConversionError(f"Converter exited with code {proc.returncode}: {detail}")

        outputs = [
            ConvertedFile(file_name=p.name, data=p.read_bytes())
            for p in sorted(output_dir.iterdir())
            if p.is_file()
        ]
        if not outputs:
            raise ConversionError("Converter produced no output files")
        return outputs

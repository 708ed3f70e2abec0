"""Read-only aggregations over file records for the storage report.

Recomputed on every call. Sizes are logical: input bytes plus output bytes.
"""
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from manuscript_vault.models.file_record import FileRecord, OutputFile


@dataclass
class GroupTotals:
    key: str | None
    count: int = 0
    input_size: int = 0
    output_size: int = 0

    @property
    def total_size(self) -> int:
        return self.input_size + self.output_size

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "count": self.count,
            "input_size": self.input_size,
            "output_size": self.output_size,
            "total_size": self.total_size,
        }


async def _grouped_totals(db: AsyncSession, column) -> dict:
    groups: dict = {}
    inputs = await db.execute(
        select(column, func.count(FileRecord.id), func.coalesce(func.sum(FileRecord.file_size), 0))
        .group_by(column)
    )
    for key, count, size in inputs.all():
        groups[key] = GroupTotals(key=key, count=count, input_size=int(size))

    outputs = await db.execute(
        select(column, func.coalesce(func.sum(OutputFile.file_size), 0))
        .select_from(FileRecord)
        .join(OutputFile, OutputFile.record_id == FileRecord.id)
        .group_by(column)
    )
    for key, size in outputs.all():
        groups.setdefault(key, GroupTotals(key=key)).output_size = int(size)
    return groups


async def totals_by_status(db: AsyncSession) -> list[GroupTotals]:
    groups = await _grouped_totals(db, FileRecord.status)
    return sorted(groups.values(), key=lambda g: str(g.key))


async def totals_by_owner(db: AsyncSession, limit: int = 10) -> list[GroupTotals]:
    """Top owners by total bytes."""
    groups = await _grouped_totals(db, FileRecord.uploaded_by)
    return sorted(groups.values(), key=lambda g: (-g.total_size, str(g.key)))[:limit]


async def totals_by_file_type(db: AsyncSession) -> list[GroupTotals]:
    groups = await _grouped_totals(db, FileRecord.file_type)
    return sorted(groups.values(), key=lambda g: str(g.key))

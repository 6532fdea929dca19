from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from rudark.core.timeutils import utcnow
from rudark.models.stock import StockMovement, StockMovementArchive

ARCHIVE_BATCH_SIZE = 100
MAX_EXPORT_ROWS = 1000

_COPIED_COLUMNS = (
    "id",
    "product_id",
    "variant_id",
    "product_name",
    "variant_sku",
    "variant_label",
    "movement_type",
    "quantity",
    "previous_quantity",
    "new_quantity",
    "reason",
    "reference",
    "store_id",
    "created_by",
    "created_at",
)


@dataclass(frozen=True)
class ArchiveStats:
    active_count: int
    archived_count: int
    oldest_active_at: datetime | None
    archivable_count: int


def _cutoff(days: int) -> datetime:
    return utcnow() - timedelta(days=days)


def archive_stats(db: Session, *, days: int) -> ArchiveStats:
    cutoff = _cutoff(days)
    return ArchiveStats(
        active_count=int(db.execute(select(func.count(StockMovement.id))).scalar_one()),
        archived_count=int(db.execute(select(func.count(StockMovementArchive.id))).scalar_one()),
        oldest_active_at=db.execute(select(func.min(StockMovement.created_at))).scalar_one(),
        archivable_count=int(
            db.execute(
                select(func.count(StockMovement.id)).where(StockMovement.created_at < cutoff)
            ).scalar_one()
        ),
    )


def archive_old_movements(db: Session, *, days: int) -> int:
    """Moves movements older than the cutoff into the archive table, one batch per commit."""
    cutoff = _cutoff(days)
    archived = 0
    while True:
        batch = db.execute(
            select(StockMovement)
            .where(StockMovement.created_at < cutoff)
            .order_by(StockMovement.created_at.asc())
            .limit(ARCHIVE_BATCH_SIZE)
        ).scalars().all()
        if not batch:
            break
        for movement in batch:
            db.add(
                StockMovementArchive(
                    **{column: getattr(movement, column) for column in _COPIED_COLUMNS},
                    archived_at=utcnow(),
                )
            )
        db.execute(delete(StockMovement).where(StockMovement.id.in_([m.id for m in batch])))
        db.commit()
        archived += len(batch)
        if len(batch) < ARCHIVE_BATCH_SIZE:
            break
    return archived


def export_archived(
    db: Session,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[StockMovementArchive]:
    stmt = select(StockMovementArchive)
    if start:
        stmt = stmt.where(StockMovementArchive.created_at >= start)
    if end:
        stmt = stmt.where(StockMovementArchive.created_at <= end)
    return list(
        db.execute(
            stmt.order_by(StockMovementArchive.created_at.desc()).limit(MAX_EXPORT_ROWS)
        ).scalars().all()
    )


def restore_archived(db: Session, archive_ids: list[str]) -> int:
    rows = db.execute(
        select(StockMovementArchive).where(StockMovementArchive.id.in_(archive_ids))
    ).scalars().all()
    for row in rows:
        db.add(StockMovement(**{column: getattr(row, column) for column in _COPIED_COLUMNS}))
    if rows:
        db.execute(
            delete(StockMovementArchive).where(StockMovementArchive.id.in_([r.id for r in rows]))
        )
    return len(rows)


def list_archived(db: Session, *, limit: int, offset: int) -> tuple[list[StockMovementArchive], int]:
    total = int(db.execute(select(func.count(StockMovementArchive.id))).scalar_one())
    rows = db.execute(
        select(StockMovementArchive)
        .order_by(StockMovementArchive.created_at.desc(), StockMovementArchive.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rudark.models.store import Store


def unset_other_defaults(db: Session, store_id: str) -> None:
    db.execute(
        update(Store)
        .where(Store.id != store_id, Store.is_default.is_(True))
        .values(is_default=False)
    )


def get_default_store(db: Session) -> Store | None:
    store = db.execute(
        select(Store).where(Store.is_default.is_(True), Store.is_active.is_(True)).limit(1)
    ).scalar_one_or_none()
    if store:
        return store
    return db.execute(
        select(Store).where(Store.is_active.is_(True)).order_by(Store.created_at.asc(), Store.name.asc()).limit(1)
    ).scalar_one_or_none()

# auction_pipeline/crud.py
"""Record store operations for `SaleRecord` entities.

Insert-if-absent keyed by (lot_id, site), count and ordered/paginated selects
for the cache layer, model discovery for the scheduler and filtered slices for
the batch processor.
"""
from sqlalchemy import select, and_, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

from .models import SaleRecord

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def insert_if_absent(db: Session, data: Dict[str, Any]) -> bool:
    """Insert one record; a (lot_id, site) collision is a no-op. Returns True if a row was written."""
    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"insert-if-absent not supported for dialect {dialect}")
    stmt = insert(SaleRecord.__table__).values(**data)
    stmt = stmt.on_conflict_do_nothing(index_elements=["lot_id", "site"])
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def key_conditions(key) -> List:
    """Filter predicate for a cache query key: make, site, optional model and year bounds."""
    conds = [SaleRecord.make == key.make, SaleRecord.site == int(key.site)]
    if key.model_filter:
        conds.append(SaleRecord.model == key.model_filter)
    if key.year_from:
        conds.append(SaleRecord.year >= key.year_from)
    if key.year_to:
        conds.append(SaleRecord.year <= key.year_to)
    return conds


def count_for_key(db: Session, key) -> int:
    stmt = select(func.count()).select_from(SaleRecord).where(and_(*key_conditions(key)))
    return db.execute(stmt).scalar_one()


def page_for_key(db: Session, key, newest_first: bool, offset: int, limit: int) -> List[SaleRecord]:
    order = SaleRecord.sale_date.desc() if newest_first else SaleRecord.sale_date.asc()
    stmt = (
        select(SaleRecord)
        .where(and_(*key_conditions(key)))
        .order_by(order, SaleRecord.id)
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def latest_ingested_at(db: Session, key):
    stmt = select(func.max(SaleRecord.created_at)).where(and_(*key_conditions(key)))
    return db.execute(stmt).scalar_one_or_none()


def count_existing(db: Session, make: str, model: Optional[str], site: int,
                   year_from: int, year_to: int, date_from, date_to) -> int:
    """Rows already stored for an exact collection tuple."""
    conds = [
        SaleRecord.make == make,
        SaleRecord.site == int(site),
        SaleRecord.sale_date >= date_from,
        SaleRecord.sale_date <= date_to,
        SaleRecord.year >= year_from,
        SaleRecord.year <= year_to,
    ]
    if model and model.strip():
        conds.append(SaleRecord.model == model.strip())
    stmt = select(func.count()).select_from(SaleRecord).where(and_(*conds))
    return db.execute(stmt).scalar_one()


def distinct_models(db: Session, make: str, date_from, date_to, limit: int = 50) -> List[str]:
    stmt = (
        select(SaleRecord.model)
        .where(and_(
            SaleRecord.make == make,
            SaleRecord.sale_date >= date_from,
            SaleRecord.sale_date <= date_to,
            SaleRecord.model.is_not(None),
            SaleRecord.model != "",
            SaleRecord.model != "Unknown",
        ))
        .distinct()
        .order_by(SaleRecord.model)
        .limit(limit)
    )
    return [m for m in db.execute(stmt).scalars() if m and m.strip()]


def analysis_slice(db: Session, filters, limit: int, offset: int = 0) -> List[SaleRecord]:
    """Newest-first slice of the corpus for batch analysis."""
    conds = []
    if filters.makes:
        conds.append(SaleRecord.make.in_(filters.makes))
    if filters.sites:
        conds.append(SaleRecord.site.in_([int(s) for s in filters.sites]))
    if filters.year_from:
        conds.append(SaleRecord.year >= filters.year_from)
    if filters.year_to:
        conds.append(SaleRecord.year <= filters.year_to)
    if filters.price_min:
        conds.append(SaleRecord.purchase_price >= filters.price_min)
    if filters.price_max:
        conds.append(SaleRecord.purchase_price <= filters.price_max)
    stmt = select(SaleRecord)
    if conds:
        stmt = stmt.where(and_(*conds))
    stmt = stmt.order_by(SaleRecord.sale_date.desc(), SaleRecord.id).offset(offset).limit(limit)
    return list(db.execute(stmt).scalars())


def record_totals(db: Session, since) -> Dict[str, int]:
    """Rows stored overall and rows ingested since `since`."""
    total = db.execute(select(func.count()).select_from(SaleRecord)).scalar_one()
    recent = db.execute(
        select(func.count()).select_from(SaleRecord).where(SaleRecord.created_at >= since)
    ).scalar_one()
    return {"total": total, "since": recent}

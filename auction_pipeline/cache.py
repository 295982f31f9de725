# auction_pipeline/cache.py
"""Cache/freshness layer over the `sales_history` table.

The record store doubles as the search cache: a query is answered from stored
rows when enough of them exist, and privileged callers additionally get a
freshness check that can force an upstream re-fetch.

Any database error on a read is treated as a cache miss so that callers fall
through to the upstream API instead of failing the request.
"""
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from . import config, crud
from .adapters import record_to_dict, to_record_values
from .schemas import Tier
from .utils import as_utc, get_logger, utcnow

logger = get_logger(__name__)


class SalesCache:

    def __init__(self, session_factory, freshness_ttl=None, now=utcnow):
        self.session_factory = session_factory
        self.freshness_ttl = freshness_ttl or timedelta(minutes=config.FRESHNESS_TTL_MINUTES)
        self.now = now

    def has_sufficient_data(self, key, page=1, page_size=config.PAGE_SIZE):
        """True iff at least page * page_size rows match the key.

        Count-based only: it does not check that the rows for this exact page
        are stable under concurrent ingestion.
        """
        try:
            with self.session_factory() as db:
                total = crud.count_for_key(db, key)
        except SQLAlchemyError as e:
            logger.error("Cache check failed for %s: %s", key.normalized(), e)
            return False
        required = page * page_size
        logger.info("Cache check: found %d results for %s, need %d for page %d",
                    total, key.normalized(), required, page)
        return total >= required

    def fetch_page(self, key, page=1, page_size=config.PAGE_SIZE, tier=Tier.FREE):
        """Rows for one page plus the total match count; ([], 0) when the store read fails."""
        return self.read_page(key, page, page_size, tier) or ([], 0)

    def read_page(self, key, page=1, page_size=config.PAGE_SIZE, tier=Tier.FREE):
        """Like `fetch_page` but returns None when the store read fails.

        Privileged tiers see newest sales first, everyone else oldest first.
        """
        tier = Tier(tier)
        offset = (page - 1) * page_size
        try:
            with self.session_factory() as db:
                records = crud.page_for_key(db, key, tier.is_privileged(), offset, page_size)
                total = crud.count_for_key(db, key)
                rows = [record_to_dict(r) for r in records]
        except SQLAlchemyError as e:
            logger.error("Cache retrieval failed for %s: %s", key.normalized(), e)
            return None
        logger.info("Cache served: %d results for page %d of %s", len(rows), page, key.normalized())
        return rows, total

    def needs_fresh_data(self, key, tier):
        tier = Tier(tier)
        if not tier.is_privileged():
            return False
        try:
            with self.session_factory() as db:
                newest = crud.latest_ingested_at(db, key)
        except SQLAlchemyError as e:
            logger.error("Fresh data check failed for %s: %s", key.normalized(), e)
            return True
        if newest is None:
            return True
        return self.now() - as_utc(newest) > self.freshness_ttl

    def store_batch(self, key, rows):
        """Insert each row unless its (lot_id, site) is already stored. Returns rows written."""
        inserted = 0
        now = self.now()
        try:
            with self.session_factory() as db:
                for raw in rows:
                    try:
                        values = to_record_values(raw, key.site, make=key.make, model=key.model_filter,
                                                  created_at=now)
                        if crud.insert_if_absent(db, values):
                            inserted += 1
                    except (ValueError, SQLAlchemyError) as e:
                        db.rollback()
                        logger.warning("Error storing individual item %s: %s", raw.get("lot_id"), e)
        except SQLAlchemyError as e:
            logger.error("Cache store failed for %s: %s", key.normalized(), e)
        logger.info("Stored %d of %d results for %s", inserted, len(rows), key.normalized())
        return inserted

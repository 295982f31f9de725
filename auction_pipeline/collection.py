# auction_pipeline/collection.py
"""Paginated collection of one make/model/site from the auction API into the record store.

This is the inner loop shared by the background scheduler and targeted
collection:

1. If rows already exist for the exact (make, model, site, years, dates)
   tuple, skip the upstream call.
2. Otherwise request pages of 25 starting at page 1, inserting every row with
   insert-if-absent and tracking the oldest sale date seen in each page.
3. Stop when a page reaches back past the window start, when a page comes back
   short, when the API fails or returns nothing, or at the page cap.

A failing page ends pagination for that unit only; callers move on to the
next model/site.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import config, crud
from .adapters import parse_sale_date, to_record_values
from .schemas import Site
from .utils import get_logger, is_cancelled, pause, utcnow

logger = get_logger(__name__)


class CollectionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class CollectionWindow:
    """Sale-date and model-year bounds for one collection run."""
    date_from: date
    date_to: date
    year_from: int
    year_to: int

    @classmethod
    def rolling(cls, days_back=None, year_from=None, year_to=None, now=None):
        today = (now or utcnow()).date()
        days_back = config.COLLECTION_DAYS_BACK if days_back is None else days_back
        return cls(
            date_from=today - timedelta(days=days_back),
            date_to=today,
            year_from=year_from or config.COLLECTION_YEAR_FROM,
            year_to=year_to or today.year + 1,
        )

    @property
    def start(self):
        return datetime.combine(self.date_from, time.min, tzinfo=timezone.utc)

    @property
    def end(self):
        return datetime.combine(self.date_to, time.max, tzinfo=timezone.utc)

    def describe(self):
        return f"{self.date_from.isoformat()} to {self.date_to.isoformat()} ({self.year_from}-{self.year_to})"


@dataclass
class SiteOutcome:
    site: Site
    model: str
    status: CollectionStatus
    records_collected: int = 0
    existing_records: int = 0
    pages_fetched: int = 0
    error: Optional[str] = None


@dataclass
class JobResult:
    make: str
    outcomes: List[SiteOutcome] = field(default_factory=list)

    @property
    def records_collected(self):
        return sum(o.records_collected for o in self.outcomes)

    @property
    def status(self):
        statuses = {o.status for o in self.outcomes}
        if CollectionStatus.CANCELLED in statuses:
            return CollectionStatus.CANCELLED
        if not statuses or statuses <= {CollectionStatus.SUCCESS, CollectionStatus.SKIPPED}:
            return CollectionStatus.SUCCESS
        if statuses == {CollectionStatus.FAILED}:
            return CollectionStatus.FAILED
        return CollectionStatus.PARTIAL


class Collector:

    def __init__(self, session_factory, client, page_size=config.PAGE_SIZE,
                 page_delay=config.PAGE_DELAY_SECONDS, model_delay=config.MODEL_DELAY_SECONDS,
                 site_delay=config.SITE_DELAY_SECONDS, max_pages=config.MAX_PAGES_PER_MODEL,
                 now=utcnow):
        self.session_factory = session_factory
        self.client = client
        self.page_size = page_size
        self.page_delay = page_delay
        self.model_delay = model_delay
        self.site_delay = site_delay
        self.max_pages = max_pages
        self.now = now

    def existing_count(self, make, model, site, window):
        try:
            with self.session_factory() as db:
                return crud.count_existing(db, make, model, site, window.year_from, window.year_to,
                                           window.start, window.end)
        except SQLAlchemyError as e:
            logger.error("Error checking existing data for %s %s site=%s: %s",
                         make, model or "all models", int(site), e)
            return 0

    def collect(self, make, model, site, window, cancel=None, force=False) -> SiteOutcome:
        """Collect one make/model/site inside `window`. `force` skips the existing-data check."""
        site = Site(int(site))
        model = (model or "").strip()
        label = f"{make} {model or 'all models'} ({site.display_name})"
        existing = self.existing_count(make, model, site, window)
        if existing > 0 and not force:
            logger.info("%s: %d records already stored for %s, skipping", label, existing, window.describe())
            return SiteOutcome(site, model, CollectionStatus.SKIPPED, existing_records=existing)

        outcome = SiteOutcome(site, model, CollectionStatus.SUCCESS, existing_records=existing)
        page = 1
        with self.session_factory() as db:
            while page <= self.max_pages:
                if is_cancelled(cancel):
                    logger.info("%s: cancelled before page %d", label, page)
                    outcome.status = CollectionStatus.CANCELLED
                    break
                result = self.client.fetch_sales(
                    make, site, model=model or None, page=page, size=self.page_size,
                    year_from=window.year_from, year_to=window.year_to,
                    date_from=window.date_from.isoformat(), date_to=window.date_to.isoformat(),
                )
                if not result.success:
                    outcome.error = result.error
                    outcome.status = CollectionStatus.FAILED if page == 1 else CollectionStatus.PARTIAL
                    logger.warning("%s: page %d failed, stopping: %s", label, page, result.error)
                    break
                rows = result.rows
                if not rows:
                    logger.info("%s: no more data on page %d", label, page)
                    break
                outcome.pages_fetched += 1
                inserted, oldest = self._store_page(db, rows, site, make, model)
                outcome.records_collected += inserted
                logger.info("%s: page %d returned %d rows, %d new", label, page, len(rows), inserted)

                if oldest is not None and oldest < window.start:
                    logger.info("%s: page %d reaches %s, before window start", label, page, oldest.date())
                    break
                if len(rows) < self.page_size:
                    break
                page += 1
                pause(self.page_delay, cancel)
            else:
                logger.warning("%s: stopped at the %d page cap", label, self.max_pages)

        logger.info("%s: collected %d new records", label, outcome.records_collected)
        return outcome

    def _store_page(self, db, rows, site, make, model):
        inserted = 0
        oldest = None
        now = self.now()
        for raw in rows:
            sale_date = parse_sale_date(raw.get("sale_date"))
            if sale_date is not None and (oldest is None or sale_date < oldest):
                oldest = sale_date
            try:
                if crud.insert_if_absent(db, to_record_values(raw, site, make=make, model=model or None,
                                                              created_at=now)):
                    inserted += 1
            except ValueError as e:
                logger.debug("Skipping row without identity: %s", e)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Error inserting lot %s: %s", raw.get("lot_id"), e)
        return inserted, oldest

    def collect_models(self, make, models, sites, window, cancel=None) -> JobResult:
        """Collect every model on every site. An empty `models` list means one pass with no model filter."""
        result = JobResult(make)
        for i, model in enumerate(models or [""]):
            if i:
                pause(self.model_delay, cancel)
            for j, site in enumerate(sites):
                if is_cancelled(cancel):
                    result.outcomes.append(SiteOutcome(Site(site), model, CollectionStatus.CANCELLED))
                    return result
                if j:
                    pause(self.site_delay, cancel)
                result.outcomes.append(self.collect(make, model, site, window, cancel))
        return result

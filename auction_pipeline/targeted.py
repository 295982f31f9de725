# auction_pipeline/targeted.py
"""On-demand collection for one make/model/date-range request.

Runs the same existence check and pagination as the background scheduler, but
synchronously, for the requested site (or both), and reports a per-site result
instead of touching the scheduler's queue.
"""
import re
from datetime import date

from .collection import CollectionStatus, CollectionWindow, Collector
from .errors import ValidationError
from .schemas import (
    ALL_SITES, CollectionCriteria, Site, SiteCheckResult, SiteCollectionResult,
    TargetedCheckResponse, TargetedCollectionResponse,
)
from .utils import get_logger, pause

logger = get_logger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
REQUIRED_FIELDS = ("make", "year_from", "year_to", "sale_date_from", "sale_date_to")


def validate_request(req):
    """Check a targeted request before any I/O. Returns the collection window."""
    missing = [name for name in REQUIRED_FIELDS if not getattr(req, name)]
    if missing or not req.make.strip():
        raise ValidationError(f"Missing required fields: {', '.join(missing or ['make'])}")
    if not DATE_RE.match(req.sale_date_from) or not DATE_RE.match(req.sale_date_to):
        raise ValidationError("Date format must be YYYY-MM-DD")
    try:
        start = date.fromisoformat(req.sale_date_from)
        end = date.fromisoformat(req.sale_date_to)
    except ValueError:
        raise ValidationError("Date format must be YYYY-MM-DD")
    if start > end:
        raise ValidationError("Start date must be before end date")
    if req.year_from > req.year_to:
        raise ValidationError("year_from must not be after year_to")
    return CollectionWindow(date_from=start, date_to=end, year_from=req.year_from, year_to=req.year_to)


def _criteria(req):
    return CollectionCriteria(
        make=req.make,
        model=req.model or "all models",
        year_range=f"{req.year_from}-{req.year_to}",
        date_range=f"{req.sale_date_from} to {req.sale_date_to}",
    )


class TargetedCollector:

    def __init__(self, collector: Collector):
        self.collector = collector

    def _sites(self, req):
        return [Site(req.site)] if req.site else list(ALL_SITES)

    def collect(self, req, cancel=None, force=False) -> TargetedCollectionResponse:
        window = validate_request(req)
        logger.info("Starting targeted collection: %s %s, %s", req.make, req.model or "all models",
                    window.describe())
        results = []
        for i, site in enumerate(self._sites(req)):
            if i:
                pause(self.collector.site_delay, cancel)
            try:
                outcome = self.collector.collect(req.make.strip(), req.model, site, window, cancel, force=force)
            except Exception as e:
                # one site failing must not hide the other site's result
                logger.exception("Error collecting from %s: %s", site.display_name, e)
                results.append(SiteCollectionResult(site=site, site_name=site.display_name,
                                                    status=CollectionStatus.FAILED.value, error=str(e)))
                continue
            results.append(SiteCollectionResult(
                site=site,
                site_name=site.display_name,
                status=outcome.status.value,
                records_collected=outcome.records_collected,
                existing_records=outcome.existing_records,
                pages_fetched=outcome.pages_fetched,
                error=outcome.error,
            ))
            logger.info("%s: collected %d new records for %s %s", site.display_name,
                        outcome.records_collected, req.make, req.model or "all models")
        return TargetedCollectionResponse(
            total_records_collected=sum(r.records_collected for r in results),
            criteria=_criteria(req),
            results=results,
        )

    def check(self, req) -> TargetedCheckResponse:
        window = validate_request(req)
        results = [
            SiteCheckResult(
                site=site,
                site_name=site.display_name,
                existing_records=self.collector.existing_count(req.make.strip(), req.model, site, window),
            )
            for site in self._sites(req)
        ]
        return TargetedCheckResponse(criteria=_criteria(req), results=results)

# auction_pipeline/services.py
from . import config
from .cache import SalesCache
from .errors import StoreUnavailableError
from .schemas import CacheQueryKey, SearchResponse, Tier
from .upstream import AuctionAPIClient
from .utils import get_logger

logger = get_logger(__name__)


def upstream_pages(page, page_size, upstream_size=config.PAGE_SIZE):
    """(upstream page, size) requests covering rows (page-1)*page_size+1 .. page*page_size."""
    if page_size <= upstream_size:
        return [(page, page_size)]
    first = (page - 1) * page_size // upstream_size + 1
    last = -(-page * page_size // upstream_size)
    return [(p, upstream_size) for p in range(first, last + 1)]


class SearchService:
    """Caller-facing search: serve from the store, fetching upstream on a miss.

    Privileged callers whose cached rows are older than the freshness TTL also
    trigger a synchronous upstream fetch of the requested page first.
    """

    def __init__(self, cache: SalesCache, client: AuctionAPIClient):
        self.cache = cache
        self.client = client

    def search(self, key: CacheQueryKey, page=1, page_size=config.PAGE_SIZE, tier=Tier.FREE) -> SearchResponse:
        tier = Tier(tier)
        from_cache = True
        if self.cache.needs_fresh_data(key, tier):
            logger.info("Fresh data requested for %s (%s)", key.normalized(), tier.value)
            from_cache = not self._fetch_upstream(key, page, page_size)
        elif not self.cache.has_sufficient_data(key, page, page_size):
            from_cache = not self._fetch_upstream(key, page, page_size)

        result = self.cache.read_page(key, page, page_size, tier)
        if result is None:
            raise StoreUnavailableError("sales data is temporarily unavailable")
        rows, total = result
        return SearchResponse(rows=rows, total_count=total, from_cache=from_cache)

    def _fetch_upstream(self, key, page, page_size):
        """Fetch the upstream pages covering the caller's page into the store.

        False when upstream failed before anything was fetched.
        """
        fetched = False
        for upstream_page, size in upstream_pages(page, page_size):
            result = self.client.fetch_sales(
                key.make, key.site, model=key.model_filter, page=upstream_page, size=size,
                year_from=key.year_from, year_to=key.year_to,
                date_from=key.date_from.isoformat() if key.date_from else None,
                date_to=key.date_to.isoformat() if key.date_to else None,
            )
            if not result.success:
                logger.warning("Upstream fetch failed for %s page %d, serving stored data: %s",
                               key.normalized(), upstream_page, result.error)
                break
            fetched = True
            self.cache.store_batch(key, result.rows)
            if len(result.rows) < size:
                break
        return fetched

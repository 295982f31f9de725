# auction_pipeline/upstream.py
"""Client for the third-party auction sales API.

The API pages through historical Copart/IAAI sales for one make (and
optionally model) at a time:

    GET <UPSTREAM_BASE_URL>?make=&site=&model=&page=&size=&year_from=&year_to=
                           &sale_date_from=&sale_date_to=
    header: api-key

Responses are either {"data": [...rows...], ...} or a bare list. Rows are not
sorted by sale date. `success=False` or an empty `data` list means there is
nothing more to fetch.

Usage:
    client = AuctionAPIClient()
    page = client.fetch_sales("Toyota", Site.COPART, model="Camry", page=1)
    if page.success:
        for row in page.rows:
            ...
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from . import config
from .errors import UpstreamError
from .utils import get_logger, retry

logger = get_logger(__name__)


@dataclass
class UpstreamPage:
    """One page of upstream results."""
    success: bool
    rows: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    status_code: Optional[int] = None


def _give_up(exc):
    return isinstance(exc, UpstreamError) and not exc.transient


class AuctionAPIClient:
    """Thin wrapper around the auction sales endpoint with timeout and a bounded retry."""

    def __init__(self, base_url=None, api_key=None, timeout=None, max_retries=None, session=None,
                 retry_delay=1.0):
        self.base_url = base_url or config.UPSTREAM_BASE_URL
        self.api_key = api_key if api_key is not None else config.UPSTREAM_API_KEY
        self.timeout = timeout or config.UPSTREAM_TIMEOUT_SECONDS
        retries = config.UPSTREAM_MAX_RETRIES if max_retries is None else max_retries
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "auction-pipeline data collection",
        })
        if self.api_key:
            self._session.headers["api-key"] = self.api_key
        self._get = retry(UpstreamError, tries=retries + 1, delay=retry_delay,
                          giveup=_give_up, logger=logger)(self._get_once)

    @staticmethod
    def build_params(make, site, model=None, page=1, size=config.PAGE_SIZE, year_from=None,
                     year_to=None, date_from=None, date_to=None):
        params = {"make": make, "site": str(int(site)), "page": str(page), "size": str(size)}
        if year_from is not None and year_from > 0:
            params["year_from"] = str(year_from)
        if year_to is not None and year_to > 0:
            params["year_to"] = str(year_to)
        if date_from:
            params["sale_date_from"] = str(date_from)
        if date_to:
            params["sale_date_to"] = str(date_to)
        if model and model.strip() and model != "undefined":
            params["model"] = model.strip()
        return params

    def _get_once(self, params):
        try:
            response = self._session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"request failed: {e}") from e
        if response.status_code >= 400:
            raise UpstreamError(f"HTTP {response.status_code}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("response is not JSON", status_code=response.status_code) from e

    def fetch_sales(self, make, site, model=None, page=1, size=config.PAGE_SIZE, year_from=None,
                    year_to=None, date_from=None, date_to=None) -> UpstreamPage:
        """Fetch one page. Never raises for upstream failures; check `success`."""
        params = self.build_params(make, site, model, page, size, year_from, year_to, date_from, date_to)
        logger.debug("Requesting auction sales %s", params)
        try:
            body = self._get(params)
        except UpstreamError as e:
            logger.error("Auction API error for %s %s site=%s page=%s: %s",
                         make, model or "all models", int(site), page, e)
            return UpstreamPage(success=False, error=str(e), status_code=e.upstream_status)

        if isinstance(body, list):
            return UpstreamPage(success=True, rows=body)
        if isinstance(body, dict):
            if body.get("success") is False:
                return UpstreamPage(success=False, error=body.get("message") or "upstream reported failure")
            rows = body.get("data")
            if isinstance(rows, dict):
                rows = rows.get("data")
            if isinstance(rows, list):
                return UpstreamPage(success=True, rows=rows)
        logger.warning("Unexpected response structure for %s page %s", make, page)
        return UpstreamPage(success=False, error="unexpected response structure")

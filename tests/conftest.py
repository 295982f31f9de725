# tests/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auction_pipeline.collection import Collector
from auction_pipeline.db import Base
from auction_pipeline.upstream import UpstreamPage
import auction_pipeline.models  # noqa: F401

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeAuctionAPI:
    """Scripted upstream. `pages[(make, site, model)]` is the list of pages, each a list of rows."""

    def __init__(self, pages=None, failures=None):
        self.pages = pages or {}
        self.failures = failures or {}
        self.calls = []

    def fetch_sales(self, make, site, model=None, page=1, size=25, **kwargs):
        key = (make, int(site), model or "")
        self.calls.append({"make": make, "site": int(site), "model": model or "", "page": page, **kwargs})
        if (key, page) in self.failures:
            return UpstreamPage(success=False, error=self.failures[(key, page)])
        pages = self.pages.get(key, [])
        rows = pages[page - 1] if page <= len(pages) else []
        return UpstreamPage(success=True, rows=list(rows))

    def calls_for(self, make, site, model=""):
        return [c for c in self.calls if c["make"] == make and c["site"] == site and c["model"] == model]


def _make_row(lot_id, sale_date="2026-05-01T10:00:00", make="Toyota", model="Camry", year=2018,
              price=5000, **extra):
    row = {
        "lot_id": lot_id,
        "vin": f"VIN{lot_id:08d}",
        "make": make,
        "model": model,
        "year": year,
        "sale_date": sale_date,
        "purchase_price": price,
        "sale_status": "Sold",
        "odometer": 80000,
        "damage_pr": "Front End",
        "keys": "Yes",
    }
    row.update(extra)
    return row


@pytest.fixture
def now():
    return lambda: NOW


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def make_row():
    return _make_row


@pytest.fixture
def fake_api():
    return FakeAuctionAPI


@pytest.fixture
def collector_factory(session_factory, now):
    def build(client):
        return Collector(session_factory, client, page_delay=0, model_delay=0, site_delay=0, now=now)
    return build

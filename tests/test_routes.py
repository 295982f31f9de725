# tests/test_routes.py
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from auction_pipeline.main import create_app
from auction_pipeline.pipeline import Pipeline
from auction_pipeline.processor import AdaptiveBatchProcessor
from auction_pipeline.schemas import CacheQueryKey, Site


@pytest.fixture
def api(fake_api, make_row):
    return fake_api({("Toyota", 2, "Camry"): [[make_row(700 + i) for i in range(3)]]})


@pytest.fixture
def pipeline(session_factory, collector_factory, api, now):
    return Pipeline(
        session_factory,
        client=api,
        collector=collector_factory(api),
        processor=AdaptiveBatchProcessor(session_factory, memory_probe=lambda: 0.2),
        makes=[("Toyota", 1), ("Honda", 2)],
        now=now,
    )


@pytest.fixture
def client(pipeline, engine):
    with TestClient(create_app(pipeline, bind=engine)) as c:
        yield c


@pytest.fixture
def seeded(pipeline, make_row):
    pipeline.cache.store_batch(CacheQueryKey(make="Toyota", model="Camry", site=Site.COPART),
                               [make_row(i, price=1000 + i) for i in range(1, 31)])


TARGETED = {
    "make": "Toyota", "model": "Camry", "year_from": 2015, "year_to": 2020,
    "sale_date_from": "2026-04-01", "sale_date_to": "2026-05-31", "site": 2,
}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_search_served_from_store(client, seeded, api):
    r = client.get("/sales/search", params={"make": "Toyota", "model": "Camry", "site": 1})
    assert r.status_code == 200
    body = r.json()
    assert body["from_cache"] is True
    assert body["total_count"] == 30
    assert len(body["rows"]) == 25
    assert body["rows"][0]["link_img_hd"] == []
    assert api.calls == []


def test_search_rejects_unknown_tier(client):
    r = client.get("/sales/search", params={"make": "Toyota", "site": 1, "tier": "diamond"})
    assert r.status_code == 422


def test_targeted_collection(client):
    r = client.post("/collection/targeted", json=TARGETED)
    assert r.status_code == 200
    body = r.json()
    assert body["total_records_collected"] == 3
    assert body["results"][0]["site_name"] == "IAAI"

    check = client.post("/collection/targeted/check", json=TARGETED)
    assert check.json()["results"] == [{"site": 2, "site_name": "IAAI", "existing_records": 3}]


def test_targeted_collection_rejects_bad_dates(client, api):
    r = client.post("/collection/targeted", json={**TARGETED, "sale_date_from": "04/01/2026"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Date format must be YYYY-MM-DD"
    assert api.calls == []


def test_targeted_collection_requires_make(client):
    r = client.post("/collection/targeted/check", json={**TARGETED, "make": None})
    assert r.status_code == 400


def test_collection_queue_and_run_next(client):
    jobs = client.get("/collection/jobs").json()
    assert [j["make"] for j in jobs] == ["Toyota", "Honda"]
    assert all(j["status"] == "pending" for j in jobs)

    r = client.post("/collection/run-next").json()
    assert r["make"] == "Toyota"
    assert [res["site"] for res in r["results"]] == [1, 2]

    status = client.get("/collection/status").json()
    assert status["completed_jobs"] == 1
    assert status["is_running"] is False


def test_stop_when_not_running(client):
    assert client.post("/collection/stop").json() == {"status": "not running"}


def test_analysis(client, seeded):
    payload = {"caller_id": 42, "requested_rows": 100, "filters": {"makes": ["Toyota"]}}
    r = client.post("/analysis", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["cached"] is False
    assert body["strategy"] == "direct"
    assert body["data"]["overview"]["total_records"] == 30

    assert client.post("/analysis", json=payload).json()["cached"] is True
    stats = client.get("/analysis/stats").json()
    assert stats["cache"]["hits"] == 1


def test_analysis_without_data_is_404(client):
    r = client.post("/analysis", json={"caller_id": 1, "requested_rows": 10})
    assert r.status_code == 404


def test_analysis_validates_row_count(client):
    assert client.post("/analysis", json={"caller_id": 1, "requested_rows": 0}).status_code == 422


def test_sales_stats(client, seeded):
    body = client.get("/sales/stats", params={"hours": 6}).json()
    assert body["total"] == 30
    assert 0 <= body["since"] <= 30


def test_run_next_reports_busy_while_a_job_runs(client, pipeline, api):
    pipeline.scheduler._run_lock.acquire()
    try:
        assert client.post("/collection/run-next").json() == {"status": "busy"}
    finally:
        pipeline.scheduler._run_lock.release()
    assert api.calls == []


def test_server_entry_point_runs_uvicorn():
    from auction_pipeline import main

    with patch("auction_pipeline.main.uvicorn.run") as run:
        main.run()
    assert run.call_args.args == (main.app,)

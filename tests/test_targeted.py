# tests/test_targeted.py
import pytest

from auction_pipeline.errors import ValidationError
from auction_pipeline.models import SaleRecord
from auction_pipeline.scheduler import CollectionScheduler
from auction_pipeline.schemas import Site, TargetedCollectionRequest
from auction_pipeline.targeted import TargetedCollector, validate_request


def _request(**overrides):
    fields = dict(make="Toyota", model="Camry", year_from=2015, year_to=2020,
                  sale_date_from="2026-04-01", sale_date_to="2026-05-31")
    fields.update(overrides)
    return TargetedCollectionRequest(**fields)


@pytest.fixture
def rows(make_row):
    return [make_row(lot) for lot in (11, 12, 13)]


@pytest.mark.parametrize("overrides, message", [
    ({"make": None}, "Missing required fields: make"),
    ({"make": "   "}, "Missing required fields: make"),
    ({"sale_date_to": None}, "Missing required fields: sale_date_to"),
    ({"sale_date_from": "04/01/2026"}, "Date format must be YYYY-MM-DD"),
    ({"sale_date_from": "2026-13-01"}, "Date format must be YYYY-MM-DD"),
    ({"sale_date_from": "2026-06-01"}, "Start date must be before end date"),
    ({"year_from": 2021}, "year_from must not be after year_to"),
])
def test_invalid_requests_fail_before_any_upstream_call(fake_api, collector_factory, overrides, message):
    api = fake_api()
    targeted = TargetedCollector(collector_factory(api))
    with pytest.raises(ValidationError) as exc:
        targeted.collect(_request(**overrides))
    assert str(exc.value) == message
    assert api.calls == []


def test_validated_window_uses_request_bounds():
    window = validate_request(_request())
    assert window.describe() == "2026-04-01 to 2026-05-31 (2015-2020)"


def test_collects_both_sites_when_site_is_omitted(fake_api, collector_factory, rows):
    api = fake_api({("Toyota", 1, "Camry"): [rows]})
    response = TargetedCollector(collector_factory(api)).collect(_request())
    assert [(int(r.site), r.status) for r in response.results] == [(1, "success"), (2, "success")]
    assert response.total_records_collected == 3
    assert response.criteria.year_range == "2015-2020"
    assert response.criteria.date_range == "2026-04-01 to 2026-05-31"
    assert api.calls[0]["date_from"] == "2026-04-01"
    assert api.calls[0]["date_to"] == "2026-05-31"


def test_single_site_request(fake_api, collector_factory):
    api = fake_api()
    response = TargetedCollector(collector_factory(api)).collect(_request(site=Site.IAAI, model=None))
    assert [c["site"] for c in api.calls] == [2]
    assert response.criteria.model == "all models"


def test_failing_site_does_not_hide_the_other(fake_api, collector_factory, rows):
    api = fake_api({("Toyota", 2, "Camry"): [rows]}, failures={(("Toyota", 1, "Camry"), 1): "HTTP 500"})
    response = TargetedCollector(collector_factory(api)).collect(_request())
    copart, iaai = response.results
    assert copart.status == "failed"
    assert copart.error == "HTTP 500"
    assert iaai.status == "success"
    assert iaai.records_collected == 3
    assert response.total_records_collected == 3


def test_unexpected_site_error_is_reported_per_site(fake_api, collector_factory, rows):
    class BrokenCopart(fake_api):
        def fetch_sales(self, make, site, *args, **kwargs):
            if int(site) == 1:
                raise RuntimeError("connection reset")
            return super().fetch_sales(make, site, *args, **kwargs)

    api = BrokenCopart({("Toyota", 2, "Camry"): [rows]})
    response = TargetedCollector(collector_factory(api)).collect(_request())
    assert response.results[0].status == "failed"
    assert response.results[0].error == "connection reset"
    assert response.results[1].records_collected == 3


def test_existing_rows_are_skipped_unless_forced(fake_api, collector_factory, rows):
    api = fake_api({("Toyota", 1, "Camry"): [rows]})
    targeted = TargetedCollector(collector_factory(api))
    targeted.collect(_request(site=Site.COPART))
    again = targeted.collect(_request(site=Site.COPART))
    assert again.results[0].status == "skipped"
    assert again.results[0].existing_records == 3
    assert len(api.calls) == 1

    forced = targeted.collect(_request(site=Site.COPART), force=True)
    assert forced.results[0].status == "success"
    assert forced.results[0].records_collected == 0
    assert len(api.calls) == 2


def test_rows_seen_by_scheduler_and_targeted_are_stored_once(
        fake_api, collector_factory, session_factory, rows, now):
    api = fake_api({("Toyota", 1, ""): [rows], ("Toyota", 1, "Camry"): [rows]})
    collector = collector_factory(api)
    scheduler = CollectionScheduler(session_factory, api, makes=[("Toyota", 1)], collector=collector, now=now)
    assert scheduler.process_next_job().records_collected == 3

    response = TargetedCollector(collector).collect(_request(site=Site.COPART), force=True)
    assert response.total_records_collected == 0
    with session_factory() as db:
        assert db.query(SaleRecord).count() == 3


def test_check_reports_existing_counts_without_collecting(fake_api, collector_factory, rows):
    api = fake_api({("Toyota", 1, "Camry"): [rows]})
    targeted = TargetedCollector(collector_factory(api))
    targeted.collect(_request(site=Site.COPART))
    result = targeted.check(_request())
    assert [(r.site_name, r.existing_records) for r in result.results] == [("Copart", 3), ("IAAI", 0)]
    assert len(api.calls) == 1


def test_check_validates_too(fake_api, collector_factory):
    with pytest.raises(ValidationError):
        TargetedCollector(collector_factory(fake_api())).check(_request(year_to=None))

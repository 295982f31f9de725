"""
Tests for the auction API client.

The HTTP session is mocked; nothing here talks to the real API.
"""
from unittest.mock import Mock

import pytest
import requests

from auction_pipeline.errors import UpstreamError
from auction_pipeline.schemas import Site
from auction_pipeline.upstream import AuctionAPIClient


def _response(status=200, body=None):
    response = Mock()
    response.status_code = status
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    s = Mock()
    s.headers = {}
    return s


@pytest.fixture
def client(session):
    return AuctionAPIClient(base_url="https://auction.test/sales", api_key="secret", timeout=7,
                            max_retries=1, session=session, retry_delay=0)


class TestBuildParams:

    def test_required_and_optional_params(self):
        params = AuctionAPIClient.build_params(
            "Toyota", Site.IAAI, model=" Camry ", page=3, size=25, year_from=2012, year_to=2027,
            date_from="2026-01-02", date_to="2026-06-01",
        )
        assert params == {
            "make": "Toyota", "site": "2", "page": "3", "size": "25", "model": "Camry",
            "year_from": "2012", "year_to": "2027",
            "sale_date_from": "2026-01-02", "sale_date_to": "2026-06-01",
        }

    @pytest.mark.parametrize("model", [None, "", "   ", "undefined"])
    def test_blank_model_is_omitted(self, model):
        assert "model" not in AuctionAPIClient.build_params("Ford", Site.COPART, model=model)

    def test_non_positive_years_are_omitted(self):
        params = AuctionAPIClient.build_params("Ford", Site.COPART, year_from=0, year_to=None)
        assert "year_from" not in params
        assert "year_to" not in params


class TestFetchSales:

    def test_data_envelope(self, client, session):
        session.get.return_value = _response(body={"data": [{"lot_id": 1}], "total": 1})
        page = client.fetch_sales("Toyota", Site.COPART, page=1)
        assert page.success
        assert page.rows == [{"lot_id": 1}]
        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == 7
        assert kwargs["params"]["make"] == "Toyota"
        assert session.headers["api-key"] == "secret"

    def test_bare_list_body(self, client, session):
        session.get.return_value = _response(body=[{"lot_id": 1}, {"lot_id": 2}])
        assert len(client.fetch_sales("Toyota", Site.COPART).rows) == 2

    def test_nested_data_body(self, client, session):
        session.get.return_value = _response(body={"data": {"data": [{"lot_id": 9}]}})
        assert client.fetch_sales("Toyota", Site.COPART).rows == [{"lot_id": 9}]

    def test_success_false_is_a_failure(self, client, session):
        session.get.return_value = _response(body={"success": False, "message": "quota exceeded"})
        page = client.fetch_sales("Toyota", Site.COPART)
        assert not page.success
        assert page.error == "quota exceeded"

    def test_unexpected_structure(self, client, session):
        session.get.return_value = _response(body={"items": []})
        assert not client.fetch_sales("Toyota", Site.COPART).success

    def test_non_json_body(self, client, session):
        session.get.return_value = _response(body=ValueError("no json"))
        page = client.fetch_sales("Toyota", Site.COPART)
        assert not page.success
        assert session.get.call_count == 1


class TestRetry:

    def test_server_error_is_retried_once(self, client, session):
        session.get.side_effect = [_response(status=503), _response(body=[{"lot_id": 1}])]
        page = client.fetch_sales("Toyota", Site.COPART)
        assert page.success
        assert session.get.call_count == 2

    def test_connection_error_is_retried_once_then_reported(self, client, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        page = client.fetch_sales("Toyota", Site.COPART)
        assert not page.success
        assert page.status_code is None
        assert session.get.call_count == 2

    def test_client_error_is_not_retried(self, client, session):
        session.get.return_value = _response(status=404)
        page = client.fetch_sales("Toyota", Site.COPART)
        assert not page.success
        assert page.status_code == 404
        assert page.error == "HTTP 404"
        assert session.get.call_count == 1

    def test_rate_limit_is_not_retried(self, client, session):
        session.get.side_effect = [_response(status=429), _response(body=[{"lot_id": 1}])]
        page = client.fetch_sales("Toyota", Site.COPART)
        assert not page.success
        assert page.status_code == 429
        assert session.get.call_count == 1

    def test_only_network_and_server_errors_are_transient(self):
        assert UpstreamError("timeout").transient
        assert UpstreamError("HTTP 502", status_code=502).transient
        assert not UpstreamError("HTTP 429", status_code=429).transient
        assert not UpstreamError("HTTP 401", status_code=401).transient

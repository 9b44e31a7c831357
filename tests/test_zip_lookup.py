import io
import json
import urllib.error
from unittest.mock import Mock

import pytest

from backend.payment_dashboard.configuration import ZipApiConfig
from backend.payment_dashboard.errors import ConfigurationError, ZipLookupError
from backend.payment_dashboard.zip_lookup import ZipCodeClient, enrich_with_zip, find_field


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def _opener(responses):
    """Answer each request from ``responses`` keyed by transaction id."""

    calls = []

    def _open(request, timeout):
        calls.append((request, timeout))
        transaction_id = request.full_url.rsplit("/", 1)[-1]
        outcome = responses[transaction_id]
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(json.dumps(outcome).encode("utf-8"))

    _open.calls = calls
    return _open


def test_fetch_zip_reads_nested_payload():
    opener = _opener({"T1": {"response": {"data": [{"id": "T1", "zip": "02139"}]}}})
    client = ZipCodeClient("https://api.example.test/", api_key="secret", timeout_s=3, opener=opener)

    assert client.fetch_zip("T1") == "02139"
    request, timeout = opener.calls[0]
    assert request.full_url == "https://api.example.test/txns/T1"
    assert request.get_header("Apikey") == "secret"
    assert timeout == 3


def test_fetch_zip_reports_missing_field():
    client = ZipCodeClient("https://api.example.test", opener=_opener({"T1": {"response": {"data": []}}}))

    with pytest.raises(ZipLookupError, match="No ZIP code"):
        client.fetch_zip("T1")


def test_fetch_zip_wraps_http_errors():
    error = urllib.error.HTTPError("https://api.example.test/txns/T1", 404, "Not Found", {}, None)
    client = ZipCodeClient("https://api.example.test", opener=_opener({"T1": error}))

    with pytest.raises(ZipLookupError, match="HTTP 404") as excinfo:
        client.fetch_zip("T1")
    assert excinfo.value.transaction_id == "T1"


def test_fetch_zip_wraps_timeouts():
    client = ZipCodeClient("https://api.example.test", opener=_opener({"T1": TimeoutError("timed out")}))

    with pytest.raises(ZipLookupError, match="TimeoutError"):
        client.fetch_zip("T1")


def test_from_config_requires_base_url():
    with pytest.raises(ConfigurationError):
        ZipCodeClient.from_config(ZipApiConfig())


def test_find_field_prefers_shallow_values():
    assert find_field({"zip": "", "billing": {"zip": 12345}}, "zip") == 12345
    assert find_field([{"other": 1}], "zip") is None


def test_enrichment_keeps_failed_rows_and_reports_errors():
    opener = _opener(
        {
            "T1": {"zip": "10001"},
            "T2": urllib.error.URLError("connection refused"),
            "T3": {"zip": "94105"},
        }
    )
    client = ZipCodeClient("https://api.example.test", opener=opener)
    rows = [
        {"id": 1, "transaction_id": "T1"},
        {"id": 2, "transaction_id": "T2"},
        {"id": 3, "transaction_id": None},
        {"id": 4, "transaction_id": "T3"},
    ]
    sleep = Mock()

    result = enrich_with_zip(rows, client, delay_seconds=0.25, sleep=sleep)

    assert [row["id"] for row in result.rows] == [1, 2, 3, 4]
    assert [row["zip"] for row in result.rows] == ["10001", None, None, "94105"]
    assert [failure.transaction_id for failure in result.errors] == ["T2", None]
    assert "zip" not in rows[0]
    # One pause between each pair of API calls, none before the first.
    assert sleep.call_count == 2
    sleep.assert_called_with(0.25)


def test_enrichment_as_dict():
    client = ZipCodeClient("https://api.example.test", opener=_opener({"T9": {"zip": None}}))

    payload = enrich_with_zip([{"transaction_id": "T9"}], client, delay_seconds=0).as_dict()

    assert payload["rows"] == [{"transaction_id": "T9", "zip": None}]
    assert payload["errors"][0]["transactionId"] == "T9"

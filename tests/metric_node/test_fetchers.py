"""
Tests for metric_node.fetchers module.

Uses a fake session so no network traffic happens.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import pytest
import requests

from metric_node.config import REQUEST_NAME_HEADER, FetchConfig
from metric_node.errors import MalformedResponse
from metric_node.fetchers import Fetcher, FetchStatus, extract_value


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self._payload = payload
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self.text = text if text is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response

    def close(self):
        self.closed = True


class TestExtractValue:
    def test_bare_number(self):
        assert extract_value(42, "cpu") == 42.0

    def test_numeric_string(self):
        assert extract_value(" 3.5\n", "cpu") == 3.5

    def test_default_value_key(self):
        assert extract_value({"value": 7}, "cpu") == 7.0

    def test_dotted_path_with_index(self):
        payload = {"data": {"items": [{"temp": 1}, {"temp": 21.5}]}}
        assert extract_value(payload, "temp", "data.items.1.temp") == 21.5

    def test_missing_path(self):
        with pytest.raises(MalformedResponse):
            extract_value({"other": 1}, "cpu")

    @pytest.mark.parametrize("raw", [True, "abc", None, float("nan"), {"value": "inf"}])
    def test_non_numeric_rejected(self, raw):
        with pytest.raises(MalformedResponse):
            extract_value(raw, "cpu")


class TestFetcher:
    """Tests for Fetcher.fetch()."""

    def test_success_sends_name_header(self):
        session = FakeSession(FakeResponse({"load": 0.75}))
        fetcher = Fetcher(session=session)
        config = FetchConfig(
            url="http://host/cpu",
            method="POST",
            headers={"Accept": "application/json"},
            json={"q": 1},
            value_path="load",
            timeout=5,
        )

        result = fetcher.fetch("cpu", config)

        assert result.ok
        assert result.status == FetchStatus.SUCCESS
        assert result.value == 0.75

        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert url == "http://host/cpu"
        assert kwargs["headers"][REQUEST_NAME_HEADER] == "cpu"
        assert kwargs["headers"]["Accept"] == "application/json"
        assert kwargs["json"] == {"q": 1}
        assert kwargs["timeout"] == 5

    def test_plain_text_body(self):
        fetcher = Fetcher(session=FakeSession(FakeResponse(text="12")))
        result = fetcher.fetch("cpu", FetchConfig(url="http://host/cpu"))
        assert result.value == 12.0

    def test_http_error_status(self):
        fetcher = Fetcher(session=FakeSession(FakeResponse({"value": 1}, status_code=500)))
        result = fetcher.fetch("cpu", FetchConfig(url="http://host/cpu"))

        assert not result.ok
        assert result.status == FetchStatus.ERROR
        assert "500" in result.error
        assert result.value is None

    def test_network_error(self, captured_logs):
        session = FakeSession(exc=requests.ConnectionError("refused"))
        result = Fetcher(session=session).fetch("cpu", FetchConfig(url="http://host/cpu"))

        assert result.status == FetchStatus.ERROR
        assert "refused" in result.error
        assert any("cpu" in m for m in captured_logs)

    def test_malformed_payload(self):
        fetcher = Fetcher(session=FakeSession(FakeResponse({"value": "n/a"})))
        result = fetcher.fetch("cpu", FetchConfig(url="http://host/cpu"))

        assert result.status == FetchStatus.MALFORMED
        assert not result.ok

    def test_close(self):
        session = FakeSession()
        Fetcher(session=session).close()
        assert session.closed

"""Tests for OMDb catalog lookups (HTTP mocked)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from vidcatalog import http_utils
from vidcatalog.omdb import OmdbClient, parse_year, transform_response

FOUND = {"Response": "True", "Title": "Heat", "Year": "1995", "imdbID": "tt0113277"}
NOT_FOUND = {"Response": "False", "Error": "Movie not found!"}


def fake_response(status=200, data=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = data
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


@pytest.fixture(autouse=True)
def no_sleep():
    with patch.object(http_utils.time, "sleep"):
        yield


class TestParsing:
    @pytest.mark.parametrize("value,expected", [
        ("1995", 1995), ("2017–2019", 2017), ("N/A", None), (None, None), ("", None),
    ])
    def test_parse_year(self, value, expected):
        assert parse_year(value) == expected

    def test_transform_found(self):
        assert transform_response(FOUND) == {"external_id": "tt0113277", "title": "Heat",
                                             "release_year": 1995}

    def test_transform_not_found(self):
        assert transform_response(NOT_FOUND) is None
        assert transform_response(None) is None


class TestOmdbClient:
    def test_lookup(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response(data=FOUND)
        client = OmdbClient(api_key="k", session=session, cache_dir=str(tmp_path))
        assert client.lookup("Heat", 1995)["external_id"] == "tt0113277"
        params = session.get.call_args.kwargs["params"]
        assert params == {"apikey": "k", "t": "Heat", "type": "movie", "y": 1995}

    def test_cached(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response(data=FOUND)
        client = OmdbClient(api_key="k", session=session, cache_dir=str(tmp_path))
        client("Heat", 1995)
        assert client("Heat", 1995)["external_id"] == "tt0113277"
        assert session.get.call_count == 1

    def test_misses_cached(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response(data=NOT_FOUND)
        client = OmdbClient(api_key="k", session=session, cache_dir=str(tmp_path))
        assert client("Nonexistent Film") is None
        assert client("Nonexistent Film") is None
        assert session.get.call_count == 1

    def test_no_api_key(self, tmp_path):
        session = MagicMock()
        client = OmdbClient(api_key="", session=session, cache_dir=str(tmp_path))
        assert client("Heat") is None
        session.get.assert_not_called()

    def test_retries_then_succeeds(self, tmp_path):
        session = MagicMock()
        session.get.side_effect = [fake_response(503), fake_response(data=FOUND)]
        client = OmdbClient(api_key="k", session=session, cache_dir=str(tmp_path),
                            use_cache=False)
        assert client("Heat")["external_id"] == "tt0113277"
        assert session.get.call_count == 2

    def test_http_error_is_no_match(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response(401)
        client = OmdbClient(api_key="bad", session=session, cache_dir=str(tmp_path))
        assert client("Heat") is None

    def test_connection_error_is_no_match(self, tmp_path):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")
        client = OmdbClient(api_key="k", session=session, cache_dir=str(tmp_path))
        assert client("Heat") is None

    def test_empty_title(self, tmp_path):
        session = MagicMock()
        client = OmdbClient(api_key="k", session=session, cache_dir=str(tmp_path))
        assert client("") is None
        session.get.assert_not_called()


class TestGetJson:
    def test_retry_after_header_honoured(self):
        session = MagicMock()
        session.get.side_effect = [fake_response(429, headers={"Retry-After": "7"}),
                                   fake_response(data=FOUND)]
        assert http_utils.get_json(session, "http://x", rate_limit=0) == FOUND
        assert http_utils.time.sleep.call_args_list[0].args == (7,)

    def test_gives_up_after_attempts(self):
        session = MagicMock()
        session.get.return_value = fake_response(503)
        with pytest.raises(requests.HTTPError):
            http_utils.get_json(session, "http://x", attempts=3)
        assert session.get.call_count == 3

    def test_client_error_not_retried(self):
        session = MagicMock()
        session.get.return_value = fake_response(404)
        with pytest.raises(requests.HTTPError):
            http_utils.get_json(session, "http://x")
        assert session.get.call_count == 1

    @pytest.mark.parametrize("header,attempt,expected", [
        ("3", 0, 3), (None, 0, 1), (None, 2, 4), ("Wed, 21 Oct 2015 07:28:00 GMT", 1, 2),
    ])
    def test_retry_delay(self, header, attempt, expected):
        headers = {} if header is None else {"Retry-After": header}
        assert http_utils.retry_delay(fake_response(503, headers=headers), attempt) == expected

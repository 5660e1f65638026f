from unittest.mock import MagicMock, patch

import pytest
import requests

from stats import StatsFetchError, StatsPoller, StatsPollerConfig

# ------------------------- Fixtures ------------------------- #

def _response(status=200, payload=None, etag=None, content_type="application/json"):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.headers = {"Content-Type": content_type}
    if etag:
        response.headers["ETag"] = etag
    response.json.return_value = payload
    response.text = "" if payload is None else str(payload)
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def poller(session):
    config = StatsPollerConfig(base_url="http://localhost:8000/", interval_seconds=0.01)
    return StatsPoller(config, session=session)


# ------------------------- Tests ------------------------- #

def test_fetch_stores_payload_and_etag(poller, session):
    session.get.return_value = _response(payload={"totalSignals": 3}, etag='W/"abc"')

    assert poller.fetch() is True
    assert poller.stats == {"totalSignals": 3}
    assert poller.etag == 'W/"abc"'
    url = session.get.call_args[0][0]
    assert url == "http://localhost:8000/api/signals/stats"
    assert "If-None-Match" not in session.get.call_args[1]["headers"]


def test_fetch_sends_etag_and_keeps_cache_on_304(poller, session):
    session.get.side_effect = [
        _response(payload={"totalSignals": 3}, etag='W/"abc"'),
        _response(status=304, etag='W/"abc"'),
    ]

    poller.fetch()
    assert poller.fetch() is False

    assert session.get.call_args[1]["headers"]["If-None-Match"] == 'W/"abc"'
    assert poller.stats == {"totalSignals": 3}


def test_fetch_raises_on_http_error(poller, session):
    session.get.return_value = _response(status=500, payload={"error": "boom"})

    with pytest.raises(StatsFetchError):
        poller.fetch()


def test_fetch_raises_on_non_json(poller, session):
    session.get.return_value = _response(payload="<html>", content_type="text/html")

    with pytest.raises(StatsFetchError):
        poller.fetch()


def test_fetch_wraps_connection_errors(poller, session):
    session.get.side_effect = requests.ConnectionError("refused")

    with pytest.raises(StatsFetchError):
        poller.fetch()


@patch("stats.poller.time.sleep")
def test_run_reports_changes_and_survives_failures(mock_sleep, poller, session):
    session.get.side_effect = [
        _response(payload={"totalSignals": 1}, etag='W/"1"'),
        requests.ConnectionError("refused"),
        _response(status=304, etag='W/"1"'),
        _response(payload={"totalSignals": 2}, etag='W/"2"'),
    ]
    updates = []

    poller.run(updates.append, iterations=4)

    assert updates == [{"totalSignals": 1}, {"totalSignals": 2}]
    assert mock_sleep.call_count == 3


def test_config_validation():
    with pytest.raises(ValueError):
        StatsPollerConfig(base_url=" ")
    with pytest.raises(ValueError):
        StatsPollerConfig(base_url="http://x", interval_seconds=0)

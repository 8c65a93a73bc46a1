import json

from starlette.requests import Request

from api.ratelimit import poller_key, rate_limit_exceeded_handler
from core.config import get_settings


def _request(path_params=None):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [],
        "query_string": b"",
        "client": ("10.0.0.7", 5000),
        "path_params": path_params or {},
    }
    return Request(scope)


def test_poller_key_separates_sessions_of_one_client():
    assert poller_key(_request({"session_id": "s1"})) == "10.0.0.7:s1"
    assert poller_key(_request({"session_id": "s2"})) == "10.0.0.7:s2"
    assert poller_key(_request()) == "10.0.0.7:gym"


def test_rate_limit_handler_advises_poll_interval():
    get_settings.cache_clear()
    response = rate_limit_exceeded_handler(_request(), RuntimeError("limited"))
    body = json.loads(response.body)
    assert response.status_code == 429
    assert body["detail"]["code"] == "RATE_LIMITED"
    assert body["detail"]["poll_interval_ms"] == get_settings().auto_advance_poll_ms
    assert "retry-after" not in response.headers

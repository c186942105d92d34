"""Pytest configuration for repo-wide test behavior."""

# Ensure project root on sys.path for imports
import os
import sys
from datetime import datetime, timezone

import pytest

root = os.path.dirname(os.path.abspath(__file__))
proj = os.path.abspath(os.path.join(root, ".."))
if proj not in sys.path:
    sys.path.insert(0, proj)

from simple_hmac_auth import ClientConfig, IncomingRequest, prepare_request, static_secrets  # noqa: E402

API_KEY = "SAMPLE_API_KEY"
SECRET = "EXAMPLE_SECRET"

# Fixed "now" for tests that care about the date header
NOW = 1_700_000_000


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("SIMPLE_HMAC_AUTH_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def lookup():
    return static_secrets({API_KEY: SECRET})


@pytest.fixture
def clock():
    return lambda: float(NOW)


@pytest.fixture
def client_config():
    return ClientConfig(api_key=API_KEY, secret=SECRET)


@pytest.fixture
def signed_request(client_config):
    """Factory for an IncomingRequest built the way the client would send it."""

    def make(method="POST", path="/v1/items/", query=None, data=None, headers=None, age=0, config=None):
        now = datetime.fromtimestamp(NOW - age, tz=timezone.utc)
        prepared = prepare_request(
            config or client_config, method, path, query=query, data=data, headers=headers, now=now
        )
        url = prepared.path
        if prepared.query_string:
            url = f"{url}?{prepared.query_string}"
        return IncomingRequest(method=prepared.method, url=url, headers=prepared.headers, raw_body=prepared.body)

    return make

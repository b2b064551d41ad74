"""Tests for npm registry lookups."""

import pytest
import requests

from dependency_audit.registry import LookupFailed, NpmRegistryLookup, RegistryCache


class FakeResponse:
    def __init__(self, payload=None, status=200, invalid=False):
        self.payload = payload
        self.status = status
        self.invalid = invalid

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Error")

    def json(self):
        if self.invalid:
            raise ValueError("not json")
        return self.payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, headers=None, timeout=None):
        self.urls.append(url)
        return self.response


def _lookup(response):
    session = FakeSession(response)
    return NpmRegistryLookup("https://registry.example.com/", RegistryCache(session=session)), session


def test_latest_version_is_cached():
    lookup, session = _lookup(FakeResponse({"dist-tags": {"latest": "7.23.2"}}))

    assert lookup.latest_version("@babel/core") == "7.23.2"
    assert lookup.latest_version("@babel/core") == "7.23.2"
    assert session.urls == ["https://registry.example.com/@babel%2Fcore"]


def test_missing_dist_tags():
    lookup, _ = _lookup(FakeResponse({"name": "x"}))
    assert lookup.latest_version("x") is None


@pytest.mark.parametrize("response", [
    FakeResponse(status=404),
    FakeResponse(invalid=True),
])
def test_failures_raise_lookup_failed(response):
    lookup, _ = _lookup(response)
    with pytest.raises(LookupFailed):
        lookup.latest_version("left-pad")


def test_connection_errors_raise_lookup_failed(monkeypatch):
    lookup = NpmRegistryLookup()

    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(lookup.cache.session, "get", refuse)
    with pytest.raises(LookupFailed):
        lookup.latest_version("react")

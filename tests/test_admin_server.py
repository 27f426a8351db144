"""Tests for the HTTP admin API."""

import pytest
from fastapi import testclient

from admin_server import create_admin_app
from proxy_cache import ProxyCache
from proxy_server import ProxyServer


@pytest.fixture
def cache(make_config, clock):
    cache = ProxyCache.from_config(make_config(), clock=clock, autostart=False)
    cache.add("http://127.0.0.1:8080/a.png", b"12345", "image/png")
    cache.add("http://127.0.0.1:8080/b.png", b"678", "image/png")
    cache.add("http://127.0.0.1:8080/index.html", b"<html/>", "text/html")
    return cache


@pytest.fixture
def client(make_config, cache):
    proxy = ProxyServer(make_config(), cache)
    return testclient.TestClient(create_admin_app(cache, proxy))


def test_show_cache(client):
    resp = client.get("/api/cache")
    assert resp.status_code == 200
    data = resp.json()
    assert data["stats"]["entries"] == 3
    assert data["stats"]["resident_bytes"] == 15
    assert data["stats"]["max_entries"] == 10
    assert {item["url"]: item["size"] for item in data["items"]} == {
        "http://127.0.0.1:8080/a.png": 5,
        "http://127.0.0.1:8080/b.png": 3,
        "http://127.0.0.1:8080/index.html": 7,
    }


def test_delete_by_pattern(client, cache):
    resp = client.delete("/api/cache/entries", params={"pattern": "*.png"})
    assert resp.status_code == 200
    assert resp.json() == {"removed": 2}
    assert len(cache) == 1
    assert cache.resident_bytes == 7


def test_delete_without_match_is_404(client, cache):
    resp = client.delete("/api/cache/entries", params={"pattern": "*.gif"})
    assert resp.status_code == 404
    assert len(cache) == 3


def test_delete_requires_pattern(client):
    assert client.delete("/api/cache/entries").status_code == 422


def test_clear_cache(client, cache):
    resp = client.delete("/api/cache")
    assert resp.json() == {"removed": 3}
    assert len(cache) == 0
    assert cache.resident_bytes == 0


def test_proxy_status(client):
    data = client.get("/api/proxy").json()
    assert data == {
        "running": False,
        "address": None,
        "upstream": "127.0.0.1:8000",
        "upstream_fetches": 0,
    }

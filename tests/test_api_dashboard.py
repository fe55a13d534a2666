"""
tests/test_api_dashboard.py -- Tests for GET /api/v1/dashboard/invalid-symbols.

Coverage:
  - Auth required (401 without credentials)
  - Empty list when every symbol is "active"
  - Symbols with any other status, a differently-cased "Active", or no
    status at all are reported; results sorted by ticker
"""

from __future__ import annotations

URL = "/api/v1/dashboard/invalid-symbols"


def test_requires_auth(api_client) -> None:
    client, _token, _uid = api_client
    resp = client.get(URL)
    assert resp.status_code == 401


def test_empty_when_all_active(api_client, admin_headers) -> None:
    client, _token, _uid = api_client
    client.post("/api/v1/admin/symbols", json={"symbol": "OK1"}, headers=admin_headers)
    resp = client.get(URL, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == []


def test_reports_non_active_symbols(api_client, admin_headers, user_factory) -> None:
    client, _token, _uid = api_client
    for ticker, status in [("BAD2", "suspended"), ("BAD1", "Active"), ("BAD3", None)]:
        resp = client.post("/api/v1/admin/symbols", json={"symbol": ticker, "status": status}, headers=admin_headers)
        assert resp.status_code == 201, resp.text

    _user_id, headers = user_factory(("user",))
    resp = client.get(URL, headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert [s["symbol"] for s in data] == ["BAD1", "BAD2", "BAD3"]
    assert data[2]["status"] is None

"""
tests/test_pages.py -- Integration tests for gated pages (/api/v1/pages/{route}).

Pages and their rules come from the default Settings.page_access:
  /         -- public
  /members  -- site.login
  /admin    -- admin.login OR admin.super

We assert on redirect Location headers directly (follow_redirects=False).

Coverage:
  - public page: 200 for anyone
  - anonymous on a protected page: 302 to /login?next=<page>
  - logged in without privilege: 403 with not_authorized, never a redirect
  - logged in with privilege: 200
  - login and logout tasks posted to / linked from a page
  - unknown pages: 404
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from conftest import PASSWORD, fetch_nonce, login


def test_public_page(client: TestClient) -> None:
    resp = client.get("/api/v1/pages/")
    assert resp.status_code == 200
    body = resp.json()
    assert body["route"] == "/"
    assert body["authorized"] is True
    assert body["identity"]["authenticated"] is False


def test_anonymous_redirected_to_login(client: TestClient) -> None:
    resp = client.get("/api/v1/pages/members")
    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    assert location.path == "/login"
    assert parse_qs(location.query)["next"] == ["/members"]


def test_member_page_after_login(client: TestClient) -> None:
    login(client)
    resp = client.get("/api/v1/pages/members")
    assert resp.status_code == 200
    assert resp.json()["identity"]["username"] == "alice"


def test_logged_in_without_privilege_sees_not_authorized(client: TestClient) -> None:
    login(client)
    resp = client.get("/api/v1/pages/admin")
    assert resp.status_code == 403
    body = resp.json()
    assert body["decision"] == "deny_inline"
    assert body["not_authorized"] is True
    assert body["show_login"] is False
    assert body["authenticated"] is False


def test_admin_page_for_admin(client: TestClient) -> None:
    login(client, username="admin")
    assert client.get("/api/v1/pages/admin").status_code == 200


def test_login_task_posted_to_page(client: TestClient) -> None:
    nonce = fetch_nonce(client)
    resp = client.post(
        "/api/v1/pages/members",
        data={"task": "login.login", "username": "alice", "password": PASSWORD, "login-form-nonce": nonce, "redirect": "/members"},
    )
    assert resp.status_code == 302
    assert resp.headers["location"] == "/members"
    assert client.get("/api/v1/pages/members").status_code == 200


def test_failed_login_task_on_public_page(client: TestClient) -> None:
    nonce = fetch_nonce(client)
    resp = client.post(
        "/api/v1/pages/",
        data={"task": "login.login", "username": "alice", "password": "Wrong1234", "login-form-nonce": nonce},
    )
    assert resp.status_code == 401
    body = resp.json()
    assert body["show_login"] is True
    assert body["template"] == "login"
    assert body["task"]["state"] == "failed"


def test_logout_task_via_page_link(client: TestClient) -> None:
    login(client)
    nonce = fetch_nonce(client, "logout-form")
    resp = client.get("/api/v1/pages/members", params={"task": "login.logout", "logout-nonce": nonce})
    assert resp.status_code == 302
    assert client.get("/api/v1/pages/members").status_code == 302


def test_unknown_page(client: TestClient) -> None:
    resp = client.get("/api/v1/pages/nowhere")
    assert resp.status_code == 404

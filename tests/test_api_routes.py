"""
tests/test_api_routes.py -- Integration tests for the /api/v1 routes.

Covers:
  - login/check/logout through the session cookie and the Bearer header
  - uniform 401 invalid_credentials for every login failure
  - 401 for anonymous callers, 403 for the wrong role
  - admin user management: create, patch, reset, delete, audit
  - self-protection errors surface as 403; demoted admins lose access at once
  - browse, media streaming, folder creation, and upload confinement
  - security headers on every response
"""

from __future__ import annotations

import os

from conftest import ADMIN_PASSWORD, GIF_BYTES, USER_PASSWORD, bearer

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def test_login_sets_cookie_and_check_reports_user(api_client):
    client, _, _ = api_client
    client.cookies.clear()
    resp = client.post("/api/v1/auth/login", json={"username": "APIADMIN", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "apiadmin"
    assert resp.headers["Cache-Control"] == "no-store"
    set_cookie = resp.headers["set-cookie"].lower()
    assert "gallery_session=" in set_cookie
    assert "httponly" in set_cookie
    assert "samesite=strict" in set_cookie

    check = client.get("/api/v1/auth/check").json()
    assert check["authenticated"] is True
    assert check["user"]["role"] == "admin"

    assert client.post("/api/v1/auth/logout").json() == {"success": True}
    client.cookies.clear()
    assert client.get("/api/v1/auth/check").json()["authenticated"] is False


def test_logout_without_session_is_fine(api_client):
    client, _, _ = api_client
    client.cookies.clear()
    assert client.post("/api/v1/auth/logout").status_code == 200


def test_login_failures_are_indistinguishable(api_client):
    client, store, _ = api_client
    client.cookies.clear()
    inactive = store.create_user("sleepy", USER_PASSWORD)
    store.delete_user(inactive.id, "system")

    bodies = []
    for username, password in [("ghost", "whatever123"), ("apiadmin", "wrongpass1"), ("sleepy", USER_PASSWORD)]:
        resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert resp.status_code == 401
        assert resp.headers["Cache-Control"] == "no-store"
        bodies.append(resp.json())
    assert bodies[0] == bodies[1] == bodies[2]
    assert bodies[0]["error"]["code"] == "invalid_credentials"
    assert bodies[0]["error"]["message"] == "Invalid username or password."
    assert bodies[0]["error"]["detail"] is None


def test_bearer_header_accepted(api_client):
    client, _, _ = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    assert client.get("/api/v1/auth/check", headers=headers).json()["authenticated"] is True


def test_change_own_password(api_client):
    client, store, _ = api_client
    store.create_user("changer", USER_PASSWORD)
    headers = bearer(client, "changer", USER_PASSWORD)

    wrong = client.post(
        "/api/v1/auth/password",
        json={"current_password": "nope12345", "new_password": "another123"},
        headers=headers,
    )
    assert wrong.status_code == 400
    assert wrong.json()["error"]["message"] == "Current password is incorrect."

    ok = client.post(
        "/api/v1/auth/password",
        json={"current_password": USER_PASSWORD, "new_password": "another123"},
        headers=headers,
    )
    assert ok.status_code == 200
    bearer(client, "changer", "another123")


def test_change_password_requires_login(api_client):
    client, _, _ = api_client
    client.cookies.clear()
    resp = client.post("/api/v1/auth/password", json={"current_password": "a" * 8, "new_password": "b" * 8})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


# ---------------------------------------------------------------------------
# Admin: users and audit
# ---------------------------------------------------------------------------


def test_admin_routes_reject_anonymous_and_non_admin(api_client):
    client, store, _ = api_client
    client.cookies.clear()
    assert client.get("/api/v1/admin/users").status_code == 401

    store.create_user("plainuser", USER_PASSWORD)
    store.create_user("uploader1", USER_PASSWORD, "uploader")
    for name in ("plainuser", "uploader1"):
        headers = bearer(client, name, USER_PASSWORD)
        resp = client.get("/api/v1/admin/users", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        assert client.get("/api/v1/admin/audit", headers=headers).status_code == 403


def test_admin_user_lifecycle(api_client):
    client, _, _ = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)

    created = client.post(
        "/api/v1/admin/users",
        json={"username": "Bob", "password": USER_PASSWORD, "role": "uploader", "display_name": "Bob B"},
        headers=headers,
    )
    assert created.status_code == 201
    bob = created.json()
    assert bob["username"] == "bob"
    assert bob["role"] == "uploader"
    assert "password" not in created.text
    assert "$2b$" not in created.text

    dup = client.post("/api/v1/admin/users", json={"username": "BOB", "password": USER_PASSWORD}, headers=headers)
    assert dup.status_code == 400
    assert dup.json()["error"]["message"] == "Username is already taken."

    patched = client.patch(f"/api/v1/admin/users/{bob['id']}", json={"display_name": "Robert"}, headers=headers)
    assert patched.status_code == 200
    assert patched.json()["display_name"] == "Robert"
    assert patched.json()["role"] == "uploader"

    reset = client.post(
        f"/api/v1/admin/users/{bob['id']}/reset-password", json={"new_password": "resetpass1"}, headers=headers
    )
    assert reset.status_code == 200
    bearer(client, "bob", "resetpass1")

    assert client.delete(f"/api/v1/admin/users/{bob['id']}", headers=headers).status_code == 204
    listed = {u["username"]: u for u in client.get("/api/v1/admin/users", headers=headers).json()}
    assert listed["bob"]["is_active"] is False

    audit = client.get("/api/v1/admin/audit?limit=10", headers=headers).json()
    bob_actions = [e["action"] for e in audit if e["target_user"] == "bob"]
    assert bob_actions == ["user_deleted", "password_reset", "user_updated", "user_created"]
    assert all(e["username"] == "apiadmin" for e in audit if e["target_user"] == "bob")


def test_admin_input_errors(api_client):
    client, _, _ = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    short = client.post("/api/v1/admin/users", json={"username": "shorty", "password": "123"}, headers=headers)
    assert short.status_code == 400
    assert short.json()["error"]["code"] == "validation_error"

    extra = client.post(
        "/api/v1/admin/users",
        json={"username": "extra", "password": USER_PASSWORD, "password_hash": "x"},
        headers=headers,
    )
    assert extra.status_code == 422

    missing = client.patch("/api/v1/admin/users/does-not-exist", json={"display_name": "x"}, headers=headers)
    assert missing.status_code == 404

    reset_missing = client.post(
        "/api/v1/admin/users/does-not-exist/reset-password", json={"new_password": "resetpass1"}, headers=headers
    )
    assert reset_missing.status_code == 400
    assert reset_missing.json()["error"] == {
        "code": "validation_error",
        "message": "User not found.",
        "detail": None,
    }

    assert client.get("/api/v1/admin/audit?limit=0", headers=headers).status_code == 422
    assert client.get("/api/v1/admin/audit?limit=1001", headers=headers).status_code == 422


def test_self_protection_and_last_admin(api_client):
    client, store, _ = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    me = store.get_by_username("apiadmin")

    demote = client.patch(f"/api/v1/admin/users/{me.id}", json={"role": "user"}, headers=headers)
    assert demote.status_code == 403
    assert demote.json()["error"]["message"] == "You cannot change your own role."
    assert client.delete(f"/api/v1/admin/users/{me.id}", headers=headers).status_code == 403

    # Demoting another admin is fine while apiadmin remains; the demoted
    # admin loses access on their next request.
    helper = store.create_user("helperadmin", USER_PASSWORD, "admin")
    helper_headers = bearer(client, "helperadmin", USER_PASSWORD)
    assert (
        client.patch(f"/api/v1/admin/users/{helper.id}", json={"role": "user"}, headers=headers).status_code == 200
    )
    assert client.get("/api/v1/admin/users", headers=helper_headers).status_code == 403
    assert store.count_active_by_role("admin") == 1


def test_deactivated_user_locked_out_on_next_request(api_client):
    client, store, _ = api_client
    admin_headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    victim = store.create_user("victim", USER_PASSWORD)
    victim_headers = bearer(client, "victim", USER_PASSWORD)
    assert client.get("/api/v1/browse", headers=victim_headers).status_code == 200

    resp = client.patch(f"/api/v1/admin/users/{victim.id}", json={"is_active": False}, headers=admin_headers)
    assert resp.status_code == 200

    assert client.get("/api/v1/browse", headers=victim_headers).status_code == 401
    assert client.get("/api/v1/auth/check", headers=victim_headers).json() == {"authenticated": False, "user": None}


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


def test_browse_requires_login(api_client):
    client, _, _ = api_client
    client.cookies.clear()
    assert client.get("/api/v1/browse").status_code == 401


def test_browse_root_and_subfolder(api_client):
    client, store, _ = api_client
    store.create_user("viewer", USER_PASSWORD)
    headers = bearer(client, "viewer", USER_PASSWORD)

    root = client.get("/api/v1/browse", headers=headers).json()
    assert root["current_path"] == ""
    assert "holidays" in [f["name"] for f in root["folders"]]
    assert [f["name"] for f in root["files"]] == ["cover.png"]

    sub = client.get("/api/v1/browse", params={"path": "holidays"}, headers=headers).json()
    assert sub["files"] == [{"name": "sunset.jpg", "type": "image", "path": "holidays/sunset.jpg"}]


def test_browse_survives_undecodable_file_name(api_client):
    client, _, media = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    odd = media / "oddnames"
    odd.mkdir()
    (odd / "good.jpg").write_bytes(GIF_BYTES)
    with open(os.path.join(os.fsencode(odd), b"bad\xff.jpg"), "wb") as fh:
        fh.write(GIF_BYTES)

    resp = client.get("/api/v1/browse", params={"path": "oddnames"}, headers=headers)
    assert resp.status_code == 200
    assert [f["name"] for f in resp.json()["files"]] == ["good.jpg"]


def test_browse_traversal_is_generic_403(api_client):
    client, _, _ = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    for path in ("..", "../", "holidays/../..", "/etc", "missing"):
        resp = client.get("/api/v1/browse", params={"path": path}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == {"code": "access_denied", "message": "Access denied.", "detail": None}


def test_media_streaming(api_client):
    client, _, _ = api_client
    headers = bearer(client, "apiadmin", ADMIN_PASSWORD)
    ok = client.get("/api/v1/media/holidays/sunset.jpg", headers=headers)
    assert ok.status_code == 200
    assert ok.content == GIF_BYTES
    assert ok.headers["content-type"].startswith("image/jpeg")

    assert client.get("/api/v1/media/secret.txt", headers=headers).status_code == 403
    assert client.get("/api/v1/media/holidays", headers=headers).status_code == 403
    assert client.get("/api/v1/media/%2E%2E/outside.jpg", headers=headers).status_code in (403, 404)

    client.cookies.clear()
    assert client.get("/api/v1/media/cover.png").status_code == 401


def test_upload_and_folder_creation(api_client):
    client, store, media = api_client
    store.create_user("lowly", USER_PASSWORD)
    store.create_user("upper", USER_PASSWORD, "uploader")

    lowly = bearer(client, "lowly", USER_PASSWORD)
    assert client.post("/api/v1/upload/folders", json={"folder_name": "nope"}, headers=lowly).status_code == 403

    upper = bearer(client, "upper", USER_PASSWORD)
    folder = client.post(
        "/api/v1/upload/folders", json={"folder_name": "trip", "parent_path": "holidays"}, headers=upper
    )
    assert folder.status_code == 201
    assert folder.json() == {"name": "trip", "type": "folder", "path": "holidays/trip"}

    uploaded = client.post(
        "/api/v1/upload",
        params={"path": "holidays/trip"},
        files=[("files", ("../../pic.gif", GIF_BYTES, "image/gif"))],
        headers=upper,
    )
    assert uploaded.status_code == 201
    assert uploaded.json()["uploaded"] == [{"name": "pic.gif", "type": "image", "path": "holidays/trip/pic.gif"}]
    assert (media / "holidays" / "trip" / "pic.gif").read_bytes() == GIF_BYTES

    rejected = client.post(
        "/api/v1/upload",
        files=[("files", ("run.sh", b"#!/bin/sh", "text/x-sh"))],
        headers=upper,
    )
    assert rejected.status_code == 400
    assert not (media / "run.sh").exists()

    escaped = client.post(
        "/api/v1/upload",
        params={"path": "../"},
        files=[("files", ("x.gif", GIF_BYTES, "image/gif"))],
        headers=upper,
    )
    assert escaped.status_code == 403


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


def test_security_headers_present(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'self'" in resp.headers["Content-Security-Policy"]

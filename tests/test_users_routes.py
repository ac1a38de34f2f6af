"""HTTP tests for profile lookup, listing and owner-only changes."""

import pytest
from fastapi.testclient import TestClient

from mixtape import app as app_module


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _register(client, username, bio=None):
    data = client.post(
        "/api/auth/register",
        json={
            "email": f"{username}@example.com",
            "username": username,
            "password": "secret123",
        },
    ).json()["data"]
    headers = {"Authorization": f"Bearer {data['accessToken']}"}
    if bio is not None:
        client.put(f"/api/users/{data['user']['id']}", json={"bio": bio}, headers=headers)
    return data["user"], headers


class TestLookup:
    def test_profile_by_id_marks_self(self, client):
        user, headers = _register(client, "alice")
        response = client.get(f"/api/users/id/{user['id']}", headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["isSelf"] is True
        assert data["user"]["username"] == "alice"

    def test_profile_of_someone_else_is_not_self(self, client):
        alice, _ = _register(client, "alice")
        _, bob_headers = _register(client, "bobby")
        response = client.get(f"/api/users/id/{alice['id']}", headers=bob_headers)
        assert response.json()["data"]["isSelf"] is False

    def test_profile_by_username(self, client):
        alice, _ = _register(client, "alice")
        response = client.get("/api/users/alice")
        assert response.status_code == 200
        assert response.json()["data"]["user"]["id"] == alice["id"]

    @pytest.mark.parametrize("path", ["/api/users/id/missing-id", "/api/users/ghost"])
    def test_unknown_user_is_not_found(self, client, path):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestListing:
    def test_pagination(self, client):
        for name in ("alpha", "bravo", "charlie"):
            _register(client, name)
        response = client.get("/api/users", params={"page": 2, "limit": 2})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
        assert len(data["users"]) == 1

    def test_newest_first(self, client):
        for name in ("alpha", "bravo"):
            _register(client, name)
        users = client.get("/api/users").json()["data"]["users"]
        assert [u["username"] for u in users] == ["bravo", "alpha"]

    def test_search_matches_username_or_bio(self, client):
        _register(client, "alpha", bio="loves vinyl")
        _register(client, "vinylhead")
        _register(client, "charlie")
        data = client.get("/api/users", params={"search": "VINYL"}).json()["data"]
        assert {u["username"] for u in data["users"]} == {"alpha", "vinylhead"}
        assert data["pagination"]["total"] == 2

    def test_listing_ignores_credentials(self, client):
        _register(client, "alpha")
        response = client.get("/api/users", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["total"] == 1

    def test_limit_is_capped(self, client):
        assert client.get("/api/users", params={"limit": 101}).status_code == 422


class TestOwnership:
    def test_owner_updates_profile(self, client):
        user, headers = _register(client, "alice")
        response = client.put(
            f"/api/users/{user['id']}",
            json={"bio": "crate digger", "avatarUrl": "https://img.example/a.png"},
            headers=headers,
        )
        assert response.status_code == 200
        updated = response.json()["data"]["user"]
        assert updated["bio"] == "crate digger"
        assert updated["avatarUrl"] == "https://img.example/a.png"

    def test_update_requires_token(self, client):
        user, _ = _register(client, "alice")
        response = client.put(f"/api/users/{user['id']}", json={"bio": "x"})
        assert response.status_code == 401

    def test_cannot_update_someone_else(self, client):
        alice, _ = _register(client, "alice")
        _, bob_headers = _register(client, "bobby")
        response = client.put(
            f"/api/users/{alice['id']}", json={"bio": "hijacked"}, headers=bob_headers
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_avatar_must_be_http_url(self, client):
        user, headers = _register(client, "alice")
        response = client.put(
            f"/api/users/{user['id']}", json={"avatarUrl": "javascript:alert(1)"}, headers=headers
        )
        assert response.status_code == 422

    def test_owner_deletes_account(self, client):
        user, headers = _register(client, "alice")
        response = client.delete(f"/api/users/{user['id']}", headers=headers)
        assert response.status_code == 200
        assert client.get(f"/api/users/id/{user['id']}").status_code == 404
        assert client.get("/api/auth/me", headers=headers).status_code == 404

    def test_cannot_delete_someone_else(self, client):
        alice, _ = _register(client, "alice")
        _, bob_headers = _register(client, "bobby")
        response = client.delete(f"/api/users/{alice['id']}", headers=bob_headers)
        assert response.status_code == 403

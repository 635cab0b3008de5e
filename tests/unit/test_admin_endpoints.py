"""Unit tests for admin API endpoints."""

import pytest

PASSWORD = "secret-password"


def _registration(email):
    return {"email": email, "password": PASSWORD, "first_name": "Ada", "last_name": "Lovelace"}


@pytest.fixture
async def admin_headers(client) -> dict:
    response = await client.post("/auth/setup", json=_registration("root@x.com"))
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def _register(client, email="a@x.com") -> str:
    response = await client.post("/auth/register", json=_registration(email))
    return response.json()["id"]


class TestAccessControl:
    """Admin routes require an ADMIN access token."""

    async def test_requires_authentication(self, client):
        response = await client.get("/admin/users")
        assert response.status_code == 401

    async def test_requires_admin_role(self, client, runtime, admin_headers):
        user_id = await _register(client)
        await client.post(f"/admin/users/{user_id}/approve", headers=admin_headers)
        login = await client.post("/auth/login", json={"email": "a@x.com", "password": PASSWORD})

        response = await client.get(
            "/admin/users",
            headers={"Authorization": f"Bearer {login.json()['access_token']}"},
        )

        assert response.status_code == 403


class TestApprovalQueue:
    """Tests for the pending queue and decisions."""

    async def test_pending_queue_oldest_first(self, client, admin_headers):
        first = await _register(client, "first@x.com")
        second = await _register(client, "second@x.com")

        response = await client.get("/admin/users/pending", headers=admin_headers)

        assert response.status_code == 200
        assert [u["id"] for u in response.json()] == [first, second]

    async def test_approve(self, client, admin_headers):
        user_id = await _register(client)

        response = await client.post(
            f"/admin/users/{user_id}/approve", json={"reason": "verified"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"

    async def test_reject_without_body(self, client, admin_headers):
        user_id = await _register(client)

        response = await client.post(f"/admin/users/{user_id}/reject", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"

    async def test_second_decision_conflicts(self, client, admin_headers):
        user_id = await _register(client)
        await client.post(f"/admin/users/{user_id}/approve", headers=admin_headers)

        response = await client.post(f"/admin/users/{user_id}/reject", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    async def test_unknown_user_404(self, client, admin_headers):
        response = await client.post("/admin/users/missing/approve", headers=admin_headers)
        assert response.status_code == 404

    async def test_reason_too_long(self, client, admin_headers):
        user_id = await _register(client)

        response = await client.post(
            f"/admin/users/{user_id}/reject", json={"reason": "x" * 501}, headers=admin_headers
        )

        assert response.status_code == 400


class TestUserManagement:
    """Tests for listing, audit, session revocation and statistics."""

    async def test_paginated_list(self, client, admin_headers):
        await _register(client, "a@x.com")
        await _register(client, "b@x.com")

        response = await client.get("/admin/users?limit=2&offset=1", headers=admin_headers)

        data = response.json()
        assert data["total"] == 3
        assert data["limit"] == 2
        assert data["offset"] == 1
        assert len(data["items"]) == 2

    async def test_audit_history(self, client, admin_headers):
        user_id = await _register(client)
        await client.post(
            f"/admin/users/{user_id}/reject", json={"reason": "spam"}, headers=admin_headers
        )

        response = await client.get(f"/admin/users/{user_id}/audit", headers=admin_headers)

        entries = response.json()
        assert [e["action"] for e in entries] == ["REJECTED", "CREATED"]
        assert entries[0]["reason"] == "spam"
        assert entries[1]["performed_by"] == "system"

    async def test_audit_unknown_user(self, client, admin_headers):
        response = await client.get("/admin/users/missing/audit", headers=admin_headers)
        assert response.status_code == 404

    async def test_revoke_sessions(self, client, admin_headers):
        user_id = await _register(client)
        await client.post(f"/admin/users/{user_id}/approve", headers=admin_headers)
        login = await client.post("/auth/login", json={"email": "a@x.com", "password": PASSWORD})

        response = await client.post(f"/admin/users/{user_id}/sessions/revoke", headers=admin_headers)

        assert response.json() == {"revoked": 1}
        refresh = await client.post("/auth/refresh", json={"refresh_token": login.json()["refresh_token"]})
        assert refresh.status_code == 401

    async def test_active_sessions_count(self, client, admin_headers):
        user_id = await _register(client)
        await client.post(f"/admin/users/{user_id}/approve", headers=admin_headers)
        for _ in range(2):
            await client.post("/auth/login", json={"email": "a@x.com", "password": PASSWORD})

        before = await client.get(f"/admin/users/{user_id}/sessions", headers=admin_headers)
        await client.post(f"/admin/users/{user_id}/sessions/revoke", headers=admin_headers)
        after = await client.get(f"/admin/users/{user_id}/sessions", headers=admin_headers)

        assert before.json() == {"user_id": user_id, "active": 2}
        assert after.json() == {"user_id": user_id, "active": 0}

    async def test_active_sessions_unknown_user(self, client, admin_headers):
        response = await client.get("/admin/users/missing/sessions", headers=admin_headers)
        assert response.status_code == 404

    async def test_statistics(self, client, admin_headers):
        approved = await _register(client, "a@x.com")
        rejected = await _register(client, "b@x.com")
        await _register(client, "c@x.com")
        await client.post(f"/admin/users/{approved}/approve", headers=admin_headers)
        await client.post(f"/admin/users/{rejected}/reject", headers=admin_headers)

        response = await client.get("/admin/statistics", headers=admin_headers)

        # the setup admin counts as active
        assert response.json() == {"pending": 1, "active": 2, "rejected": 1}

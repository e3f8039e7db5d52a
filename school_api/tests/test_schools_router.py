"""Tests for school bootstrap, owner administration, cascade delete and session resolution."""

from __future__ import annotations

import pytest


class TestCreateSchool:
    @pytest.mark.asyncio
    async def test_public_create(self, client) -> None:
        resp = await client.post(
            "/api/v1/schools",
            json={"name": "Lakeside", "email": "office@lakeside.test", "settings": {"currency": "EUR"}},
        )

        assert resp.status_code == 201
        body = resp.json()
        assert len(body["id"]) == 32
        assert body["settings"] == {"currency": "EUR"}

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, client) -> None:
        resp = await client.post("/api/v1/schools", json={"name": "   "})

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, client) -> None:
        resp = await client.post("/api/v1/schools", json={"name": "X", "owner_id": "me"})

        assert resp.status_code == 422


class TestCurrentSchool:
    @pytest.mark.asyncio
    async def test_any_member_reads(self, client, seed, auth) -> None:
        school_id = await seed.school("Mine")
        desk = await seed.member(school_id, "receptionist")

        resp = await client.get("/api/v1/schools/current", headers=auth(desk))

        assert resp.status_code == 200
        assert resp.json()["name"] == "Mine"

    @pytest.mark.asyncio
    async def test_profile_less_identity_denied(self, client, auth) -> None:
        resp = await client.get("/api/v1/schools/current", headers=auth("nobody"))

        assert resp.status_code == 403
        assert resp.json() == {"detail": "Access denied", "code": "access_denied"}

    @pytest.mark.asyncio
    async def test_inactive_member_denied(self, client, seed, auth) -> None:
        school_id = await seed.school()
        gone = await seed.member(school_id, "manager", active=False)

        resp = await client.get("/api/v1/schools/current", headers=auth(gone))

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_owner_updates(self, client, seed, auth) -> None:
        school_id = await seed.school()
        owner = await seed.member(school_id, "owner")

        resp = await client.patch(
            "/api/v1/schools/current",
            json={"phone": "555-0100", "settings": {"term": "autumn"}},
            headers=auth(owner),
        )

        assert resp.status_code == 200
        assert resp.json()["phone"] == "555-0100"
        assert resp.json()["settings"] == {"term": "autumn"}

    @pytest.mark.asyncio
    async def test_manager_cannot_update(self, client, seed, auth) -> None:
        school_id = await seed.school()
        manager = await seed.member(school_id, "manager")

        resp = await client.patch("/api/v1/schools/current", json={"name": "Renamed"}, headers=auth(manager))

        assert resp.status_code == 403
        assert resp.json()["detail"] == "Access denied"


class TestDeleteSchool:
    @pytest.mark.asyncio
    async def test_owner_deletes_with_cascade(self, client, seed, auth) -> None:
        school_id = await seed.school()
        owner = await seed.member(school_id, "owner")
        desk = await seed.member(school_id, "receptionist")
        await client.post("/api/v1/records/students", json={"name": "Ana"}, headers=auth(owner))

        resp = await client.delete("/api/v1/schools/current", headers=auth(owner))

        assert resp.status_code == 204
        for identity in (owner, desk):
            session = await client.get("/api/v1/session", headers=auth(identity))
            assert session.json()["context"] is None

    @pytest.mark.asyncio
    async def test_manager_cannot_delete(self, client, seed, auth) -> None:
        school_id = await seed.school()
        manager = await seed.member(school_id, "manager")

        resp = await client.delete("/api/v1/schools/current", headers=auth(manager))

        assert resp.status_code == 403


class TestSessionEndpoint:
    @pytest.mark.asyncio
    async def test_profile_less_identity_gets_null_context(self, client, auth) -> None:
        resp = await client.get("/api/v1/session", headers=auth("fresh", "fresh@example.com"))

        assert resp.status_code == 200
        assert resp.json() == {"identity_id": "fresh", "email": "fresh@example.com", "context": None}

    @pytest.mark.asyncio
    async def test_inactive_profile_reports_inactive(self, client, seed, auth) -> None:
        school_id = await seed.school()
        gone = await seed.member(school_id, "receptionist", active=False)

        resp = await client.get("/api/v1/session", headers=auth(gone))

        assert resp.json()["context"]["active"] is False

"""Tests for RequestLoggingMiddleware."""

from __future__ import annotations

import logging

import pytest


def _access_records(caplog) -> list[dict]:
    return [r.request for r in caplog.records if r.name == "school_api.access"]


class TestRequestLogging:
    @pytest.mark.asyncio
    async def test_logs_tenant_and_role(self, client, seed, auth, caplog) -> None:
        school_id = await seed.school()
        manager = await seed.member(school_id, "manager")

        with caplog.at_level(logging.INFO, logger="school_api.access"):
            await client.get("/api/v1/records/students", headers=auth(manager))

        entry = _access_records(caplog)[-1]
        assert entry["status_code"] == 200
        assert entry["tenant_id"] == school_id
        assert entry["role"] == "manager"
        assert entry["identity_id"] == manager

    @pytest.mark.asyncio
    async def test_masks_credentials(self, client, auth, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="school_api.access"):
            await client.get("/api/v1/session", headers=auth("masked"))

        entry = _access_records(caplog)[-1]
        assert entry["headers"]["authorization"] == "***"

    @pytest.mark.asyncio
    async def test_anonymous_request(self, client, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="school_api.access"):
            resp = await client.get("/api/v1/health")

        entry = _access_records(caplog)[-1]
        assert entry["tenant_id"] == "anonymous"
        assert entry["correlation_id"] == resp.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_denied_request_logged_as_warning(self, client, auth, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="school_api.access"):
            await client.get("/api/v1/records/students", headers=auth("nobody"))

        record = [r for r in caplog.records if r.name == "school_api.access"][-1]
        assert record.levelno == logging.WARNING
        assert record.request["status_code"] == 403

"""
Rate limiting of public write endpoints, keyed on the client address
"""

import pytest

from app.core.config import settings


class TestRateLimiting:

    def test_rate_limit_config(self):
        assert settings.RATE_LIMIT == 100
        assert settings.RATE_LIMIT_WINDOW == 600  # 10 minutes

    @pytest.mark.asyncio
    async def test_requests_over_limit_are_refused(self, test_client, fake_redis, monkeypatch, valid_quotation_data):
        monkeypatch.setattr(settings, "RATE_LIMIT", 2)

        statuses = []
        for _ in range(3):
            response = await test_client.post("/quotations/", json=valid_quotation_data)
            statuses.append(response.status_code)

        assert statuses == [201, 201, 429]

    @pytest.mark.asyncio
    async def test_clients_are_counted_separately(self, test_client, fake_redis, monkeypatch, valid_quotation_data):
        monkeypatch.setattr(settings, "RATE_LIMIT", 1)

        first = await test_client.post(
            "/quotations/", json=valid_quotation_data, headers={"X-Forwarded-For": "10.0.0.1"}
        )
        second = await test_client.post(
            "/quotations/", json=valid_quotation_data, headers={"X-Forwarded-For": "10.0.0.2"}
        )

        assert first.status_code == 201
        assert second.status_code == 201
        assert fake_redis.store["rl:10.0.0.1"] == 1

    @pytest.mark.asyncio
    async def test_without_redis_requests_pass(self, test_client, monkeypatch, valid_quotation_data):
        monkeypatch.setattr(settings, "RATE_LIMIT", 0)

        response = await test_client.post("/quotations/", json=valid_quotation_data)

        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_monitoring_is_not_limited(self, test_client, fake_redis, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT", 0)

        response = await test_client.get("/health")

        assert response.status_code == 200

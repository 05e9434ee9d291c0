"""Unit tests for docledger.engine.health — HealthCheckService."""

import asyncio
import pytest
from unittest.mock import MagicMock

from docledger.engine.health import HealthCheckResult, HealthCheckService, HealthStatus


class TestHealthStatus:
    def test_values(self):
        assert HealthStatus.HEALTHY == "healthy"
        assert HealthStatus.DEGRADED == "degraded"
        assert HealthStatus.UNHEALTHY == "unhealthy"
        assert HealthStatus.UNKNOWN == "unknown"


class TestHealthCheckResult:
    def test_to_dict(self):
        result = HealthCheckResult(name="database", status=HealthStatus.HEALTHY, latency_ms=5.2, message="OK")
        d = result.to_dict()
        assert d["name"] == "database"
        assert d["status"] == "healthy"
        assert d["latency_ms"] == 5.2
        assert d["message"] == "OK"


class TestHealthCheckService:
    def setup_method(self):
        self.svc = HealthCheckService()

    def test_register_check(self):
        async def my_check():
            return True
        self.svc.register_check("test", my_check)
        assert "test" in self.svc.registered_checks
        assert self.svc.get_last_result("test").status == HealthStatus.UNKNOWN

    def test_get_last_result_none(self):
        assert self.svc.get_last_result("nonexistent") is None

    @pytest.mark.asyncio
    async def test_async_check_healthy(self):
        async def ok():
            return True
        self.svc.register_check("ok", ok)
        result = await self.svc.check("ok")
        assert result.status == HealthStatus.HEALTHY
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_sync_check_unhealthy(self):
        self.svc.register_check("bad", lambda: False)
        result = await self.svc.check("bad")
        assert result.status == HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_check_raising(self):
        def boom():
            raise RuntimeError("kaput")
        self.svc.register_check("boom", boom)
        result = await self.svc.check("boom")
        assert result.status == HealthStatus.UNHEALTHY
        assert "kaput" in result.message

    @pytest.mark.asyncio
    async def test_check_timeout(self):
        async def slow():
            await asyncio.sleep(1)
            return True
        self.svc.register_check("slow", slow, timeout=0.01)
        result = await self.svc.check("slow")
        assert result.status == HealthStatus.UNHEALTHY
        assert "Timeout" in result.message

    @pytest.mark.asyncio
    async def test_check_unregistered(self):
        result = await self.svc.check("ghost")
        assert result.status == HealthStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_check_all_and_summary(self):
        self.svc.register_check("a", lambda: True)
        self.svc.register_check("b", lambda: False)
        results = await self.svc.check_all()
        assert set(results) == {"a", "b"}
        summary = self.svc.summary()
        assert summary["status"] == "unhealthy"
        assert summary["checks"]["a"]["status"] == "healthy"

    def test_summary_degraded_before_checks_run(self):
        self.svc.register_check("a", lambda: True)
        assert self.svc.summary()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_database_check(self, database):
        self.svc.register_database_check("database", database)
        result = await self.svc.check("database")
        assert result.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_blob_store_check(self, blob_store):
        self.svc.register_blob_store_check("blob_store", blob_store)
        result = await self.svc.check("blob_store")
        assert result.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_blob_store_check_unavailable(self):
        store = MagicMock()
        store.is_available.return_value = False
        self.svc.register_blob_store_check("blob_store", store)
        result = await self.svc.check("blob_store")
        assert result.status == HealthStatus.UNHEALTHY

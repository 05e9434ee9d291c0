"""
DocLedger Health Check — Connectivity checks for the metadata database and
the blob store.

Provides:
    - HealthCheckService: register sync or async checks, run one or all
    - Overall health summary (healthy / degraded / unhealthy)

Used by:
    - DocLedgerService.check_health()
    - `docledger health` CLI command
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from docledger.db.session import Database
    from docledger.documents.blob_store import BlobStore

logger = logging.getLogger("docledger.engine.health")


class HealthStatus(str, Enum):
    """Health status of a subsystem."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a single health check."""
    name: str
    status: HealthStatus
    latency_ms: float = 0.0
    message: str = ""
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class _RegisteredCheck:
    name: str
    check_fn: Callable
    timeout: float = 10.0


class HealthCheckService:
    """
    Central health monitoring for the service's backing stores.

    Usage:
        service = HealthCheckService()
        service.register_database_check("database", database)
        results = await service.check_all()
        summary = service.summary()
    """

    def __init__(self):
        self._checks: Dict[str, _RegisteredCheck] = {}
        self._results: Dict[str, HealthCheckResult] = {}

    def register_check(self, name: str, check_fn: Callable, timeout: float = 10.0) -> None:
        """
        Register a health check.

        Args:
            check_fn: Sync or async callable returning True when healthy.
                Raising counts as unhealthy.
        """
        self._checks[name] = _RegisteredCheck(name=name, check_fn=check_fn, timeout=timeout)
        self._results[name] = HealthCheckResult(name=name, status=HealthStatus.UNKNOWN)
        logger.debug(f"Registered health check: {name}")

    def register_database_check(self, name: str, database: "Database", timeout: float = 10.0) -> None:
        """SELECT 1 against the metadata database."""
        self.register_check(name, database.ping, timeout)

    def register_blob_store_check(self, name: str, blob_store: "BlobStore", timeout: float = 10.0) -> None:
        """Verify the blob store root is reachable and writable."""
        self.register_check(name, blob_store.is_available, timeout)

    async def check(self, name: str) -> HealthCheckResult:
        """Run a single check by name and remember the result."""
        if name not in self._checks:
            return HealthCheckResult(
                name=name,
                status=HealthStatus.UNKNOWN,
                message=f"No health check registered for '{name}'",
            )

        registered = self._checks[name]
        start = time.monotonic()
        try:
            if asyncio.iscoroutinefunction(registered.check_fn):
                healthy = await asyncio.wait_for(registered.check_fn(), timeout=registered.timeout)
            else:
                healthy = await asyncio.wait_for(
                    asyncio.to_thread(registered.check_fn), timeout=registered.timeout
                )
            latency_ms = (time.monotonic() - start) * 1000
            if healthy:
                result = HealthCheckResult(name, HealthStatus.HEALTHY, latency_ms, "OK")
            else:
                result = HealthCheckResult(name, HealthStatus.UNHEALTHY, latency_ms, "Check returned unhealthy")
        except asyncio.TimeoutError:
            latency_ms = (time.monotonic() - start) * 1000
            result = HealthCheckResult(
                name, HealthStatus.UNHEALTHY, latency_ms, f"Timeout after {registered.timeout}s"
            )
        except Exception as e:
            latency_ms = (time.monotonic() - start) * 1000
            logger.warning(f"Health check '{name}' raised: {e}")
            result = HealthCheckResult(name, HealthStatus.UNHEALTHY, latency_ms, str(e))

        self._results[name] = result
        return result

    async def check_all(self) -> Dict[str, HealthCheckResult]:
        """Run all registered checks concurrently."""
        if self._checks:
            await asyncio.gather(*(self.check(name) for name in self._checks))
        return dict(self._results)

    def get_last_result(self, name: str) -> Optional[HealthCheckResult]:
        return self._results.get(name)

    def summary(self) -> Dict[str, Any]:
        """Overall status plus the last result of every check."""
        results = dict(self._results)
        statuses = [r.status for r in results.values()]

        if all(s == HealthStatus.HEALTHY for s in statuses):
            overall = HealthStatus.HEALTHY
        elif any(s == HealthStatus.UNHEALTHY for s in statuses):
            overall = HealthStatus.UNHEALTHY
        else:
            overall = HealthStatus.DEGRADED

        return {
            "status": overall.value,
            "checks": {name: r.to_dict() for name, r in results.items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @property
    def registered_checks(self) -> List[str]:
        return list(self._checks.keys())

"""
Liveness and readiness probes.

Readiness covers what a mount needs: a reachable credential store, plus
enough disk and memory headroom for the in-memory event logs.
"""
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import psutil

from .credentials.base import CredentialStore
from .logging import get_logger

logger = get_logger()

GB = 1024 ** 3
MB = 1024 ** 2


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _headroom(available: float, total: float, percent: float, floor: float, unit: float, suffix: str) -> Dict[str, Any]:
    """Grade free capacity against ``floor`` (error below it, warning below twice it)."""
    free = available / unit
    if free < floor:
        status = "error"
    elif free < floor * 2:
        status = "warning"
    else:
        status = "ok"
    return {
        "status": status,
        f"available_{suffix}": round(free, 2),
        f"total_{suffix}": round(total / unit, 2),
        "used_percent": percent,
    }


class HealthChecker:
    """Builds the /health and /health/ready payloads."""

    def __init__(
        self,
        service_name: str = "livebridge",
        version: str = "0.1.0",
        credential_store: Optional[CredentialStore] = None,
        session_count: Optional[Callable[[], int]] = None,
        min_disk_gb: float = 1.0,
        min_memory_mb: float = 50.0,
    ):
        self.service_name = service_name
        self.version = version
        self.credential_store = credential_store
        self._session_count = session_count
        self._min_disk_gb = min_disk_gb
        self._min_memory_mb = min_memory_mb

    def liveness(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": self.service_name,
            "version": self.version,
            "timestamp": _now(),
        }

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness check.

        Only an ``error`` check makes the service not ready; warnings are
        reported but keep it in rotation.
        """
        checks = {
            "credential_store": await self._check_credential_store(),
            "disk_space": self._check_disk_space(),
            "memory": self._check_memory(),
        }
        if self._session_count is not None:
            checks["sessions"] = {"status": "ok", "active": self._session_count()}

        ready = all(check["status"] != "error" for check in checks.values())
        return {
            "status": "ready" if ready else "not_ready",
            "service": self.service_name,
            "version": self.version,
            "timestamp": _now(),
            "checks": checks,
        }

    async def _check_credential_store(self) -> Dict[str, Any]:
        if self.credential_store is None:
            return {"status": "skipped", "message": "Credential store not configured"}

        backend = type(self.credential_store).__name__
        start = time.time()
        try:
            healthy = await self.credential_store.health_check()
        except Exception as e:
            logger.warning("health.credential_store_failed", backend=backend, error=str(e))
            return {"status": "error", "backend": backend, "error": str(e)}

        if not healthy:
            return {"status": "error", "backend": backend}
        return {
            "status": "ok",
            "backend": backend,
            "latency_ms": round((time.time() - start) * 1000, 2),
        }

    def _check_disk_space(self) -> Dict[str, Any]:
        try:
            disk = psutil.disk_usage("/")
        except (psutil.Error, OSError) as e:
            logger.warning("health.disk_failed", error=str(e))
            return {"status": "error", "error": str(e)}
        return _headroom(disk.free, disk.total, disk.percent, self._min_disk_gb, GB, "gb")

    def _check_memory(self) -> Dict[str, Any]:
        try:
            memory = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            logger.warning("health.memory_failed", error=str(e))
            return {"status": "error", "error": str(e)}
        return _headroom(memory.available, memory.total, memory.percent, self._min_memory_mb, MB, "mb")

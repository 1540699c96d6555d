"""
Health checks for the governance collector.

Checks (each enabled via health.checks.*):
    - database: SELECT 1 against the governance database
    - postman_api: GET /me latency against health.thresholds.api_response_time_ms
    - disk_space: usage of the database volume against disk_usage_percent
    - memory_usage: system memory usage against memory_usage_percent

Overall status: any check unhealthy → "unhealthy"; any warning/degraded →
"degraded"; all healthy → "healthy"; otherwise "unknown".
"""

import time
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import psutil

DEFAULT_CHECKS = {"database": True, "postman_api": True, "disk_space": True, "memory_usage": False}

DEFAULT_THRESHOLDS = {"disk_usage_percent": 85, "memory_usage_percent": 90, "api_response_time_ms": 5000}

GIB = 1024**3


def _elapsed_ms(start: float) -> int:
    return round((time.monotonic() - start) * 1000)


def determine_overall_health(checks: Mapping[str, Mapping[str, Any]]) -> str:
    statuses = [check.get("status") for check in checks.values()]
    if "unhealthy" in statuses:
        return "unhealthy"
    if "warning" in statuses or "degraded" in statuses:
        return "degraded"
    if statuses and all(status == "healthy" for status in statuses):
        return "healthy"
    return "unknown"


class HealthChecker:
    """
    Runs the configured health checks.

    Args:
        db: DatabaseManager (initialized)
        client: PostmanAPIClient, or None to skip the API check
        config: The ``health`` configuration section
        logger: GovernanceLogger
    """

    def __init__(self, db: Any, client: Any, config: Mapping[str, Any] | None, logger: Any):
        config = config or {}
        self.db = db
        self.client = client
        self.logger = logger
        self.checks = {**DEFAULT_CHECKS, **(config.get("checks") or {})}
        self.thresholds = {**DEFAULT_THRESHOLDS, **(config.get("thresholds") or {})}

    async def check_health(self) -> dict[str, Any]:
        """
        Run every enabled check.

        Returns:
            {"overall": str, "timestamp": iso8601, "checks": {...}, "response_time_ms": int}
        """
        start = time.monotonic()
        checks: dict[str, dict[str, Any]] = {}

        if self.checks.get("database"):
            checks["database"] = self.check_database()
        if self.checks.get("postman_api") and self.client is not None:
            checks["postman_api"] = await self.check_postman_api()
        if self.checks.get("disk_space"):
            checks["disk_space"] = self.check_disk_space()
        if self.checks.get("memory_usage"):
            checks["memory_usage"] = self.check_memory_usage()

        result = {
            "overall": determine_overall_health(checks),
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
            "response_time_ms": _elapsed_ms(start),
        }

        self.logger.debug(
            "Health check completed",
            {
                "overall": result["overall"],
                "response_time_ms": result["response_time_ms"],
                "failed_checks": [name for name, check in checks.items() if check["status"] != "healthy"],
            },
        )
        return result

    def check_database(self) -> dict[str, Any]:
        start = time.monotonic()
        try:
            self.db.ping()
        except Exception as e:
            return {"status": "unhealthy", "error": str(e), "details": {"connection": "failed"}}

        return {
            "status": "healthy",
            "response_time_ms": _elapsed_ms(start),
            "details": {"connection": "ok", "query_test": "passed"},
        }

    async def check_postman_api(self) -> dict[str, Any]:
        start = time.monotonic()
        try:
            await self.client.get_user()
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "details": {
                    "connectivity": "failed",
                    "possible_causes": [
                        "Invalid API key",
                        "Network connectivity issue",
                        "Postman API service down",
                        "Rate limit exceeded",
                    ],
                },
            }

        response_time = _elapsed_ms(start)
        slow = response_time > self.thresholds["api_response_time_ms"]
        return {
            "status": "degraded" if slow else "healthy",
            "response_time_ms": response_time,
            "details": {"connectivity": "ok", "authentication": "valid", "slow_response": slow},
        }

    def _disk_path(self) -> Path:
        path = Path(getattr(self.db, "path", ".") or ".")
        if str(path) == ":memory:":
            return Path.cwd()
        # The database file may not exist yet; fall back to its nearest existing parent
        while not path.exists() and path != path.parent:
            path = path.parent
        return path if path.is_dir() else path.parent

    def check_disk_space(self) -> dict[str, Any]:
        try:
            usage = psutil.disk_usage(str(self._disk_path()))
        except OSError as e:
            return {"status": "unknown", "error": str(e)}

        used_percent = usage.used / usage.total * 100 if usage.total else 0.0
        threshold = self.thresholds["disk_usage_percent"]
        return {
            "status": "warning" if used_percent > threshold else "healthy",
            "details": {
                "used_percentage": round(used_percent, 2),
                "total_gb": round(usage.total / GIB, 2),
                "free_gb": round(usage.free / GIB, 2),
                "threshold": threshold,
            },
        }

    def check_memory_usage(self) -> dict[str, Any]:
        try:
            memory = psutil.virtual_memory()
            rss = psutil.Process().memory_info().rss
        except psutil.Error as e:
            return {"status": "unknown", "error": str(e)}

        threshold = self.thresholds["memory_usage_percent"]
        return {
            "status": "warning" if memory.percent > threshold else "healthy",
            "details": {
                "system": {
                    "used_percentage": round(memory.percent, 2),
                    "total_gb": round(memory.total / GIB, 2),
                    "free_gb": round(memory.available / GIB, 2),
                },
                "process": {"rss_memory_mb": round(rss / (1024 * 1024), 2)},
                "threshold": threshold,
            },
        }

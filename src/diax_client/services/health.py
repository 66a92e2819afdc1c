"""Health metrics service: fetches, write-through caching and chart shaping."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import date, timedelta
from typing import Any

import structlog

from diax_client.cache.manager import CacheManager
from diax_client.retry import with_retry
from diax_core.keys import canonical_query
from diax_infra.http.fetch_executor import FetchExecutor

logger = structlog.get_logger()

# Chart metric type -> field name in the chart_data rows
CHART_FIELDS: dict[str, str] = {
    "blood_glucose": "blood_glucose",
    "blood_pressure_systolic": "systolic_pressure",
    "blood_pressure_diastolic": "diastolic_pressure",
    "heart_rate": "heart_rate",
    "weight": "weight_kg",
    "a1c": "a1c",
}

# Display name -> key in the distribution payload
DISTRIBUTION_METRICS: list[tuple[str, str]] = [
    ("Blood Glucose", "blood_glucose"),
    ("Blood Pressure", "blood_pressure"),
    ("Heart Rate", "heart_rate"),
    ("Exercise", "exercise"),
    ("Weight", "weight"),
    ("A1C", "a1c"),
]


class HealthService:
    """Accessors for health statistics, metrics and medical information.

    Every successful read is written through to the caches so bindings to
    the same key see it without another request.
    """

    def __init__(
        self,
        executor: FetchExecutor,
        cache: CacheManager,
        *,
        timeout: float = 10.0,
        metrics_timeout: float = 15.0,
        retry_budget: int = 2,
        retry_wait: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize with the executor, cache manager and call budgets."""
        self._executor = executor
        self._cache = cache
        self._keys = cache.keys
        self._timeout = timeout
        self._metrics_timeout = metrics_timeout
        self._retry_budget = retry_budget
        self._retry_wait = retry_wait
        self._sleep = sleep

    async def get_health_stats(self, days: int = 30, retry_budget: int | None = None) -> Any:
        """Fetch summary statistics for the last ``days`` days.

        Transient failures (network, timeout) are retried with a fixed
        pause; the final failure is raised to the caller.
        """
        key = self._keys.health_stats(days)
        budget = self._retry_budget if retry_budget is None else retry_budget

        async def _fetch() -> Any:
            return await self._executor.request("GET", key, timeout=self._timeout, strict=True)

        try:
            data = await with_retry(
                _fetch,
                budget=budget,
                wait_seconds=self._retry_wait,
                label="health_stats",
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.error("health_stats_failed", days=days, error=str(exc))
            raise

        await self._cache.update_cache(key, data)
        return data

    async def get_health_metrics(self, params: Mapping[str, object] | None = None) -> Any:
        """Fetch paginated/filtered metric rows (type, days, from, to, limit, page)."""
        query = canonical_query(params)
        key = self._keys.health_metrics(query)
        try:
            data = await self._executor.request(
                "GET", key, timeout=self._metrics_timeout, strict=True
            )
        except Exception as exc:
            logger.error("health_metrics_failed", query=query, error=str(exc))
            raise
        await self._cache.update_cache(key, data)
        return data

    async def get_medical_info(self) -> Any:
        """Fetch the user's medical information."""
        key = self._keys.medical_info()
        try:
            data = await self._executor.request("GET", key, timeout=self._timeout, strict=True)
        except Exception as exc:
            logger.error("medical_info_failed", error=str(exc))
            raise
        await self._cache.update_cache(key, data)
        return data

    async def get_chart_data(self, metric_type: str, days: int) -> list[Any]:
        """Chart rows for one metric type, or [] when the call fails."""
        key = self._keys.health_charts(canonical_query({"type": metric_type, "days": days}))
        try:
            data = await self._executor.request("GET", key, timeout=self._timeout, strict=True)
        except Exception as exc:
            logger.warning("chart_data_failed", metric_type=metric_type, error=str(exc))
            return []
        if isinstance(data, dict):
            return list(data.get("chart_data") or [])
        return []

    async def get_distribution_data(self, days: int) -> dict[str, Any]:
        """Reading counts per metric, or {} when the call fails."""
        key = self._keys.health_distribution(canonical_query({"days": days}))
        try:
            data = await self._executor.request("GET", key, timeout=self._timeout, strict=True)
        except Exception as exc:
            logger.warning("distribution_data_failed", days=days, error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    # --- mutations ---

    async def add_health_metric(self, metric: Mapping[str, Any]) -> Any:
        """Create a metric row and invalidate health caches."""
        data = await self._executor.request(
            "POST", self._keys.health_metrics(), json_body=dict(metric), strict=True
        )
        await self._cache.invalidate_health_caches()
        return data

    async def update_health_metric(self, metric_id: int, metric: Mapping[str, Any]) -> Any:
        """Update a metric row and invalidate health caches."""
        url = f"{self._keys.health_metrics()}/{metric_id}"
        data = await self._executor.request(
            "PUT", url, json_body=dict(metric), strict=True
        )
        await self._cache.invalidate_health_caches()
        return data

    async def delete_health_metric(self, metric_id: int) -> Any:
        """Delete a metric row and invalidate health caches."""
        url = f"{self._keys.health_metrics()}/{metric_id}"
        data = await self._executor.request("DELETE", url, strict=True)
        await self._cache.invalidate_health_caches()
        return data


def format_chart_data(rows: Any, metric_type: str) -> list[dict[str, Any]]:
    """Project chart rows onto ``{date, value}`` points for one metric."""
    if not rows or not isinstance(rows, list):
        return []
    field = CHART_FIELDS.get(metric_type)
    points: list[dict[str, Any]] = []
    for row in rows:
        value = (row.get(field) or 0) if field else 0
        points.append({"date": row.get("date"), "value": value})
    return points


def format_distribution_data(data: Any) -> list[dict[str, Any]]:
    """Reading totals per metric; zero rows dropped unless all are zero."""
    if not data:
        return []
    metrics = [
        {"name": name, "value": (data.get(field) or {}).get("total_readings") or 0}
        for name, field in DISTRIBUTION_METRICS
    ]
    non_zero = [item for item in metrics if item["value"] > 0]
    return non_zero or metrics


def format_exercise_type_data(data: Any) -> list[dict[str, Any]]:
    """Exercise counts per type."""
    if not data or not isinstance(data.get("exercise"), dict):
        return []
    types = data["exercise"].get("types")
    if not types:
        return []
    return [{"name": name, "value": count} for name, count in types.items()]


def generate_empty_data_for_timeframe(days: int, today: date | None = None) -> list[dict[str, Any]]:
    """Zero-valued points for each of the last ``days`` days, oldest first.

    Labels are "Mon, Oct 19" for a week or less, otherwise just "Mon".
    """
    today = today or date.today()
    points: list[dict[str, Any]] = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        label = f"{day:%a, %b} {day.day}" if days <= 7 else f"{day:%a}"
        points.append({"date": label, "value": 0})
    return points

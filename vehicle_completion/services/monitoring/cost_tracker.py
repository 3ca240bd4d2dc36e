"""
Provider Cost Ledger

In-memory record of every provider sub-call and every partial-failure report,
with the aggregates needed for cost and failure-rate dashboards and alerts.
Each call is also emitted as a structured `provider_call` log event, so the
logs alone are enough to rebuild the same accounting downstream.
"""

import threading
from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog

from vehicle_completion.config import Settings, settings as default_settings
from vehicle_completion.services.monitoring.error_tracking import capture_message

logger = structlog.get_logger(__name__)

CALL_LOG_SIZE = 1000
FAILURE_LOG_SIZE = 100

TIMEFRAMES = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
}

CRITICAL_ENDPOINTS = ("vehicleSpecs", "vehicleHistory")
IMPORTANT_ENDPOINTS = ("motHistory",)


def calculate_severity(failed_endpoints: List[str]) -> str:
    """high when specs or history failed, medium for MOT, otherwise low."""
    if any(endpoint in CRITICAL_ENDPOINTS for endpoint in failed_endpoints):
        return "high"
    if any(endpoint in IMPORTANT_ENDPOINTS for endpoint in failed_endpoints):
        return "medium"
    return "low"


class ApiCallLedger:
    """
    Thread-safe bounded log of provider calls.

    Keeps the last 1000 calls and the last 100 failure reports.
    """

    def __init__(self, config: Settings = default_settings):
        self.config = config
        self._calls: deque = deque(maxlen=CALL_LOG_SIZE)
        self._failure_reports: deque = deque(maxlen=FAILURE_LOG_SIZE)
        self._lock = threading.Lock()
        self.logger = logger.bind(service="cost_tracker")

    def record_call(
        self,
        vrm: str,
        endpoint: str,
        cost: float,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
        attempts: int = 1,
        timestamp: Optional[datetime] = None
    ) -> dict:
        """
        Record one sub-call. Failed calls are billed at 0.

        Returns:
            The stored entry
        """
        entry = {
            "vrm": vrm,
            "endpoint": endpoint,
            "cost": cost if success else 0.0,
            "success": success,
            "latency_ms": latency_ms,
            "attempts": attempts,
            "error": error,
            "timestamp": timestamp or datetime.now(timezone.utc),
        }
        with self._lock:
            self._calls.append(entry)

        self.logger.info(
            "provider_call",
            vrm=vrm,
            endpoint=endpoint,
            cost=entry["cost"],
            success=success,
            latency_ms=latency_ms,
            attempts=attempts,
            error=error
        )
        return entry

    def record_failure_report(self, vrm: str, errors: List[dict]) -> Optional[dict]:
        """
        Record a partial-failure report for one fetch.

        Args:
            vrm: Registration fetched
            errors: Provider error entries (each with at least "endpoint")

        Returns:
            The report, or None when there were no errors
        """
        if not errors:
            return None

        severity = calculate_severity([err["endpoint"] for err in errors])
        report = {
            "vrm": vrm,
            "timestamp": datetime.now(timezone.utc),
            "total_errors": len(errors),
            "errors": [
                {
                    "endpoint": err["endpoint"],
                    "category": err.get("category"),
                    "reason": err.get("reason"),
                }
                for err in errors
            ],
            "severity": severity,
        }
        with self._lock:
            self._failure_reports.append(report)

        self.logger.error(
            "provider_failure_report",
            vrm=vrm,
            severity=severity,
            total_errors=len(errors),
            endpoints=[err["endpoint"] for err in errors]
        )
        if severity == "high":
            capture_message(
                f"Provider failure ({severity}) for {vrm}: "
                + ", ".join(err["endpoint"] for err in errors),
                level="error"
            )
        return report

    def _filtered(self, timeframe: str, vrm: Optional[str], now: datetime) -> List[dict]:
        with self._lock:
            calls = list(self._calls)
        if timeframe in TIMEFRAMES:
            cutoff = now - TIMEFRAMES[timeframe]
            calls = [call for call in calls if call["timestamp"] > cutoff]
        if vrm:
            calls = [call for call in calls if call["vrm"] == vrm.upper()]
        return calls

    def stats(
        self,
        timeframe: str = "all",
        vrm: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> dict:
        """
        Aggregate call statistics.

        Args:
            timeframe: "hour", "day", "week" or "all"
            vrm: Restrict to one registration
            now: Reference time (default: now, UTC)
        """
        calls = self._filtered(timeframe, vrm, now or datetime.now(timezone.utc))

        total_calls = len(calls)
        successful_calls = sum(1 for call in calls if call["success"])
        total_cost = sum(call["cost"] for call in calls)
        average_latency = (
            sum(call["latency_ms"] for call in calls) / total_calls if total_calls else 0
        )

        endpoint_stats: Dict[str, dict] = {}
        for call in calls:
            bucket = endpoint_stats.setdefault(call["endpoint"], {"calls": 0, "cost": 0.0, "failures": 0})
            bucket["calls"] += 1
            bucket["cost"] += call["cost"]
            if not call["success"]:
                bucket["failures"] += 1

        cost_by_endpoint = sorted(
            (
                {
                    "endpoint": endpoint,
                    "cost": round(bucket["cost"], 2),
                    "calls": bucket["calls"],
                    "failures": bucket["failures"],
                }
                for endpoint, bucket in endpoint_stats.items()
            ),
            key=lambda item: item["cost"],
            reverse=True
        )

        return {
            "timeframe": timeframe,
            "total_calls": total_calls,
            "successful_calls": successful_calls,
            "failed_calls": total_calls - successful_calls,
            "success_rate": round(successful_calls / total_calls * 100, 1) if total_calls else 0.0,
            "total_cost": round(total_cost, 2),
            "average_latency_ms": round(average_latency),
            "endpoint_stats": endpoint_stats,
            "cost_by_endpoint": cost_by_endpoint,
        }

    def failure_stats(self) -> dict:
        with self._lock:
            reports = list(self._failure_reports)
        by_endpoint = Counter(err["endpoint"] for report in reports for err in report["errors"])
        return {
            "total_reports": len(reports),
            "by_severity": dict(Counter(report["severity"] for report in reports)),
            "by_endpoint": dict(by_endpoint),
            "recent": reports[-10:],
        }

    def cost_alerts(self, daily: dict, weekly: dict) -> List[dict]:
        alerts = []

        if daily["total_cost"] > self.config.daily_cost_alert_gbp:
            alerts.append({
                "type": "warning",
                "message": f"High daily API cost: £{daily['total_cost']:.2f}",
                "recommendation": "Consider implementing more aggressive caching",
            })

        if daily["total_calls"] and daily["success_rate"] < self.config.success_rate_alert_percent:
            alerts.append({
                "type": "error",
                "message": f"Low API success rate: {daily['success_rate']}%",
                "recommendation": "Check API connectivity and error handling",
            })

        if daily["average_latency_ms"] > self.config.slow_response_alert_ms:
            alerts.append({
                "type": "warning",
                "message": f"Slow API response time: {daily['average_latency_ms']}ms",
                "recommendation": "Monitor API performance and consider timeout adjustments",
            })

        weekly_average = weekly["total_cost"] / 7
        if daily["total_cost"] > 0 and daily["total_cost"] > weekly_average * 2:
            alerts.append({
                "type": "info",
                "message": (
                    f"Daily cost (£{daily['total_cost']:.2f}) is 2x higher than "
                    f"weekly average (£{weekly_average:.2f})"
                ),
                "recommendation": "Monitor for unusual usage patterns",
            })

        return alerts

    def dashboard(self, dedup_stats: Optional[dict] = None, now: Optional[datetime] = None) -> dict:
        """
        Cost monitoring snapshot: hour/day/week totals, deduplication
        savings, top endpoints by cost, and active alerts.
        """
        now = now or datetime.now(timezone.utc)
        hourly = self.stats("hour", now=now)
        daily = self.stats("day", now=now)
        weekly = self.stats("week", now=now)

        dedup_stats = dedup_stats or {}
        savings = float(dedup_stats.get("total_savings", 0.0))
        potential = daily["total_cost"] + savings

        return {
            "current_hour": {
                "calls": hourly["total_calls"],
                "cost": hourly["total_cost"],
                "success_rate": hourly["success_rate"],
            },
            "current_day": {
                "calls": daily["total_calls"],
                "cost": daily["total_cost"],
                "success_rate": daily["success_rate"],
                "average_latency_ms": daily["average_latency_ms"],
            },
            "current_week": {
                "calls": weekly["total_calls"],
                "cost": weekly["total_cost"],
                "success_rate": weekly["success_rate"],
            },
            "deduplication": {
                "active_sessions": dedup_stats.get("active_sessions", 0),
                "total_savings": round(savings, 2),
                "savings_percentage": round(savings / potential * 100, 1) if potential else 0.0,
            },
            "top_endpoints": daily["cost_by_endpoint"][:5],
            "alerts": self.cost_alerts(daily, weekly),
        }

"""Pipeline health checks and import statistics."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from autoposter.ai.translator import Translator
from autoposter.storage.base import Store
from autoposter.storage.records import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING

logger = logging.getLogger(__name__)

# USD per token
INPUT_TOKEN_COST = 3.0 / 1_000_000
OUTPUT_TOKEN_COST = 15.0 / 1_000_000

PERIODS = ("today", "week", "month")


@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, Any]
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Statistics:
    period: str
    total_imports: int
    successful_imports: int
    failed_imports: int
    pending_imports: int
    tokens_used: int
    estimated_cost: float
    top_feeds: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MonitoringService:
    def __init__(
        self,
        store: Store,
        translator: Optional[Translator] = None,
        *,
        queue_alert_threshold: int = 50,
        failure_rate_alert_pct: float = 20.0,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.translator = translator
        self.queue_alert_threshold = queue_alert_threshold
        self.failure_rate_alert_pct = failure_rate_alert_pct
        self._now = now or (lambda: datetime.now(timezone.utc))

    def get_system_health(self) -> HealthStatus:
        issues: List[str] = []
        checks: Dict[str, Any] = {
            "store_connected": False,
            "ai_available": False,
            "pending_queue_size": 0,
            "failure_rate_24h": 0.0,
        }

        try:
            checks["store_connected"] = bool(self.store.ping())
            if not checks["store_connected"]:
                issues.append("Store connection failed")
        except Exception as e:
            issues.append(f"Store connection failed: {e}")

        if self.translator is None:
            issues.append("OPENAI_API_KEY not configured")
        else:
            checks["ai_available"] = self.translator.test_connection()
            if not checks["ai_available"]:
                issues.append("Text generation service connection test failed")

        try:
            pending = self.store.count_imports(status=STATUS_PENDING)
            checks["pending_queue_size"] = pending
            if pending > self.queue_alert_threshold:
                issues.append(f"High pending queue: {pending} items")
        except Exception as e:
            issues.append(f"Failed to check pending queue: {e}")

        try:
            rate = self.get_failure_rate(24)
            checks["failure_rate_24h"] = rate
            if rate > self.failure_rate_alert_pct:
                issues.append(f"High failure rate: {rate:.1f}%")
        except Exception as e:
            issues.append(f"Failed to calculate failure rate: {e}")

        return HealthStatus(healthy=not issues, checks=checks, issues=issues)

    def get_failure_rate(self, hours: int = 24) -> float:
        """Failed share of imports processed in the last ``hours``, as a percentage."""
        cutoff = self._now() - timedelta(hours=hours)
        completed = self.store.count_imports(status=STATUS_COMPLETED, processed_after=cutoff)
        failed = self.store.count_imports(status=STATUS_FAILED, processed_after=cutoff)
        total = completed + failed
        if total == 0:
            return 0.0
        return failed / total * 100.0

    def period_start(self, period: str) -> datetime:
        now = self._now()
        if period == "today":
            return now.replace(hour=0, minute=0, second=0, microsecond=0)
        if period == "week":
            return now - timedelta(days=7)
        if period == "month":
            return now - timedelta(days=30)
        raise ValueError(f"Unknown period '{period}' (expected one of {', '.join(PERIODS)})")

    def get_statistics(self, period: str = "today") -> Statistics:
        start = self.period_start(period)
        completed = self.store.count_imports(status=STATUS_COMPLETED, processed_after=start)
        failed = self.store.count_imports(status=STATUS_FAILED, processed_after=start)
        pending = self.store.count_imports(status=STATUS_PENDING)
        tokens = self.store.sum_translation_tokens(processed_after=start)

        # Rough split: half prompt, half completion
        cost = tokens * 0.5 * INPUT_TOKEN_COST + tokens * 0.5 * OUTPUT_TOKEN_COST

        return Statistics(
            period=period,
            total_imports=completed + failed,
            successful_imports=completed,
            failed_imports=failed,
            pending_imports=pending,
            tokens_used=tokens,
            estimated_cost=round(cost, 2),
            top_feeds=self.get_top_feeds(start),
        )

    def get_top_feeds(self, start: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        counts = []
        for feed in self.store.list_feeds(limit=100):
            n = self.store.count_imports(status=STATUS_COMPLETED, feed_id=feed.id, processed_after=start)
            if n > 0:
                counts.append({"feed_id": feed.id, "name": feed.name, "imports": n})
        counts.sort(key=lambda x: x["imports"], reverse=True)
        return counts[:limit]

    def check_and_alert(self) -> HealthStatus:
        logger.info("Running health checks...")
        health = self.get_system_health()
        if health.healthy:
            logger.info("All health checks passed")
        else:
            logger.warning("System health issues detected:")
            for issue in health.issues:
                logger.warning(f"  - {issue}")
        logger.info(f"Pending queue size: {health.checks['pending_queue_size']}")
        logger.info(f"24h failure rate: {health.checks['failure_rate_24h']:.1f}%")
        return health

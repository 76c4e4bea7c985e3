"""Learning-session metrics.

Counts external calls, cache behaviour and rule outcomes so that a host
can report how a learning run went. Metrics are kept in memory and owned
by the pipeline instance.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from rulelearner.core.logging import get_logger
from rulelearner.core.models import utc_now_iso

_logger = get_logger("monitor")


@dataclass
class LearningMetrics:
    """Counters for a session or for the monitor's lifetime."""

    llm_calls: int = 0
    llm_failures: int = 0
    llm_total_seconds: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0
    rules_generated: int = 0
    fallback_rules: int = 0
    rules_approved: int = 0
    rules_manual_review: int = 0
    rules_rejected: int = 0

    def to_dict(self) -> dict[str, Any]:
        cache_lookups = self.cache_hits + self.cache_misses
        decided = self.rules_approved + self.rules_manual_review + self.rules_rejected
        return {
            "llm_calls": self.llm_calls,
            "llm_failures": self.llm_failures,
            "avg_llm_seconds": (
                round(self.llm_total_seconds / self.llm_calls, 3) if self.llm_calls else 0.0
            ),
            "cache_hit_rate": round(self.cache_hits / cache_lookups, 4) if cache_lookups else 0.0,
            "rules_generated": self.rules_generated,
            "fallback_rules": self.fallback_rules,
            "rules_approved": self.rules_approved,
            "rules_manual_review": self.rules_manual_review,
            "rules_rejected": self.rules_rejected,
            "approval_rate": round(self.rules_approved / decided, 4) if decided else 0.0,
        }


@dataclass
class LearningSession:
    session_id: str
    source: str
    started_at: str = field(default_factory=utc_now_iso)
    ended_at: str | None = None
    duration_seconds: float | None = None
    metrics: LearningMetrics = field(default_factory=LearningMetrics)
    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)


class LearningMonitor:
    """Collects metrics for the active session and across all sessions."""

    def __init__(self, max_sessions: int = 50) -> None:
        self.totals = LearningMetrics()
        self.max_sessions = max_sessions
        self._sessions: list[LearningSession] = []
        self._active: LearningSession | None = None

    @property
    def active_session(self) -> LearningSession | None:
        return self._active

    def start_session(self, source: str = "live") -> str:
        """Start a session, closing any session still active."""
        if self._active is not None:
            self.end_session()
        self._active = LearningSession(session_id=uuid.uuid4().hex[:12], source=source)
        _logger.debug("learning_session_started", session_id=self._active.session_id)
        return self._active.session_id

    def end_session(self) -> LearningSession | None:
        session = self._active
        if session is None:
            return None
        session.ended_at = utc_now_iso()
        session.duration_seconds = round(time.monotonic() - session._start_monotonic, 3)
        self._sessions.append(session)
        del self._sessions[: -self.max_sessions]
        self._active = None
        _logger.info(
            "learning_session_ended",
            session_id=session.session_id,
            duration_seconds=session.duration_seconds,
            **session.metrics.to_dict(),
        )
        return session

    def _targets(self) -> list[LearningMetrics]:
        if self._active is None:
            return [self.totals]
        return [self.totals, self._active.metrics]

    def record_llm_call(self, duration_seconds: float, success: bool) -> None:
        for metrics in self._targets():
            metrics.llm_calls += 1
            metrics.llm_total_seconds += duration_seconds
            if not success:
                metrics.llm_failures += 1

    def record_cache_hit(self) -> None:
        for metrics in self._targets():
            metrics.cache_hits += 1

    def record_cache_miss(self) -> None:
        for metrics in self._targets():
            metrics.cache_misses += 1

    def record_rule_generation(self, count: int, fallback: bool = False) -> None:
        for metrics in self._targets():
            metrics.rules_generated += count
            if fallback:
                metrics.fallback_rules += count

    def record_decisions(self, approved: int, manual_review: int, rejected: int) -> None:
        for metrics in self._targets():
            metrics.rules_approved += approved
            metrics.rules_manual_review += manual_review
            metrics.rules_rejected += rejected

    def get_report(self) -> dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "active_session": self._active.session_id if self._active else None,
            "sessions": [
                {
                    "session_id": session.session_id,
                    "source": session.source,
                    "started_at": session.started_at,
                    "duration_seconds": session.duration_seconds,
                    **session.metrics.to_dict(),
                }
                for session in self._sessions
            ],
        }

    def reset(self) -> None:
        self.totals = LearningMetrics()
        self._sessions.clear()
        self._active = None

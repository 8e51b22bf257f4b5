"""Estadísticas de procesamiento de callbacks.

Se construye una instancia por aplicación y se inyecta donde se necesita.
"""

from __future__ import annotations

from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

CallbackKind = Literal["verification", "message"]
HealthStatus = Literal["healthy", "warning", "error"]

TRACKED_TYPES = ("text", "image", "voice", "video", "event")
MAX_RECENT_ERRORS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _Counters:
    total: int = 0
    success: int = 0
    failed: int = 0
    last_time: datetime | None = None
    last_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "last_time": self.last_time.isoformat() if self.last_time else None,
            "last_error": self.last_error,
        }


@dataclass(frozen=True, slots=True)
class RecordedError:
    timestamp: datetime
    kind: CallbackKind
    error: str
    details: dict[str, Any] | None = None


@dataclass(slots=True)
class CallbackStats:
    """Contadores de verificación y mensajes con un diagnóstico de salud."""

    clock: Callable[[], datetime] = _utcnow
    verification: _Counters = field(default_factory=_Counters)
    message: _Counters = field(default_factory=_Counters)
    by_type: Counter[str] = field(default_factory=Counter)
    recent_errors: deque[RecordedError] = field(
        default_factory=lambda: deque(maxlen=MAX_RECENT_ERRORS)
    )
    started_at: datetime = field(init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    def record_verification(self, success: bool, error: str | None = None) -> None:
        self._record(self.verification, "verification", success, error, None)

    def record_message(
        self,
        success: bool,
        message_type: str | None = None,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._record(self.message, "message", success, error, details)
        if success and message_type:
            self.by_type[message_type if message_type in TRACKED_TYPES else "other"] += 1

    def _record(
        self,
        counters: _Counters,
        kind: CallbackKind,
        success: bool,
        error: str | None,
        details: dict[str, Any] | None,
    ) -> None:
        now = self.clock()
        counters.total += 1
        counters.last_time = now
        if success:
            counters.success += 1
            counters.last_error = None
            return
        counters.failed += 1
        counters.last_error = error or "Unknown error"
        self.recent_errors.appendleft(
            RecordedError(timestamp=now, kind=kind, error=counters.last_error, details=details)
        )

    def health(self) -> tuple[HealthStatus, list[str]]:
        """Estado agregado y lista de problemas detectados."""
        now = self.clock()
        issues: list[str] = []
        status: HealthStatus = "healthy"

        last_message = self.message.last_time
        if last_message and last_message < now - timedelta(hours=1):
            issues.append(f"No message callbacks for over an hour (last: {last_message.isoformat()})")
            status = "warning"

        total = self.verification.total + self.message.total
        failures = self.verification.failed + self.message.failed
        if total:
            rate = failures / total
            if rate > 0.1:
                issues.append(f"Callback failure rate too high: {rate * 100:.1f}%")
                status = "error" if rate > 0.3 else "warning"

        if self.recent_errors:
            latest = self.recent_errors[0]
            if latest.timestamp > now - timedelta(minutes=5):
                issues.append(f"Recent error: {latest.error}")
                if status == "healthy":
                    status = "warning"

        return status, issues

    def snapshot(self) -> dict[str, Any]:
        now = self.clock()
        uptime = now - self.started_at
        status, issues = self.health()
        return {
            "started_at": self.started_at.isoformat(),
            "uptime_seconds": int(uptime.total_seconds()),
            "verification": self.verification.as_dict(),
            "message": {
                **self.message.as_dict(),
                "by_type": {name: self.by_type.get(name, 0) for name in (*TRACKED_TYPES, "other")},
            },
            "recent_errors": [
                {
                    "timestamp": item.timestamp.isoformat(),
                    "type": item.kind,
                    "error": item.error,
                    "details": item.details,
                }
                for item in self.recent_errors
            ],
            "health": {"status": status, "issues": issues},
        }

    def reset(self) -> None:
        self.verification = _Counters()
        self.message = _Counters()
        self.by_type.clear()
        self.recent_errors.clear()
        self.started_at = self.clock()

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

ACTIVE_SYNC_STATUSES = frozenset({"syncing", "partial", "paused"})


class JobHealth(str, Enum):
    HEALTHY = "healthy"
    STUCK = "stuck"
    EXPIRED = "expired"


@dataclass(slots=True)
class RecoveryAttempt:
    attempted_at: datetime
    action: str
    success: bool
    message: str

    def to_json(self) -> dict[str, Any]:
        return {
            "attempted_at": self.attempted_at.isoformat(),
            "action": self.action,
            "success": self.success,
            "message": self.message,
        }

    @classmethod
    def from_json(cls, payload: Any) -> RecoveryAttempt | None:
        if not isinstance(payload, dict):
            return None
        attempted_at = parse_timestamp(payload.get("attempted_at"))
        if attempted_at is None:
            return None
        return cls(
            attempted_at=attempted_at,
            action=str(payload.get("action") or "unknown"),
            success=bool(payload.get("success")),
            message=str(payload.get("message") or ""),
        )


@dataclass(slots=True)
class SyncJob:
    id: str
    platform: str
    workspace_id: str
    status: str
    progress: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    recovery_attempts: list[RecoveryAttempt] = field(default_factory=list)

    @property
    def heartbeat_at(self) -> datetime | None:
        return parse_timestamp(self.progress.get("heartbeat"))

    @property
    def last_updated_at(self) -> datetime | None:
        return self.updated_at or parse_timestamp(self.progress.get("updated_at"))


@dataclass(slots=True, frozen=True)
class StuckThresholds:
    syncing: timedelta = timedelta(minutes=5)
    idle: timedelta = timedelta(minutes=10)
    recent_update: timedelta = timedelta(minutes=2)
    hard_ceiling: timedelta = timedelta(minutes=30)

    def for_status(self, status: str) -> timedelta:
        return self.syncing if status == "syncing" else self.idle


DEFAULT_THRESHOLDS = StuckThresholds()


@dataclass(slots=True)
class JobAssessment:
    health: JobHealth
    last_activity: datetime | None
    time_since_activity: timedelta | None
    reason: str


@dataclass(slots=True)
class StuckJob:
    job: SyncJob
    health: JobHealth
    last_activity: datetime | None
    stuck_duration_minutes: int

    @property
    def expired(self) -> bool:
        return self.health is JobHealth.EXPIRED

    @property
    def recovery_attempts(self) -> list[RecoveryAttempt]:
        return self.job.recovery_attempts


def classify_job(
    job: SyncJob,
    *,
    now: datetime | None = None,
    thresholds: StuckThresholds = DEFAULT_THRESHOLDS,
) -> JobAssessment:
    current = now or datetime.now(timezone.utc)
    if job.status not in ACTIVE_SYNC_STATUSES:
        return JobAssessment(JobHealth.HEALTHY, None, None, "status_not_active")

    updated_at = job.last_updated_at
    last_activity = _latest(job.heartbeat_at, updated_at)
    if last_activity is None:
        return JobAssessment(JobHealth.EXPIRED, None, None, "no_activity_recorded")

    if updated_at is not None and current - updated_at <= thresholds.recent_update:
        return JobAssessment(JobHealth.HEALTHY, last_activity, current - last_activity, "recently_updated")

    time_since_activity = max(timedelta(0), current - last_activity)
    if time_since_activity <= thresholds.for_status(job.status):
        return JobAssessment(JobHealth.HEALTHY, last_activity, time_since_activity, "within_threshold")
    if time_since_activity > thresholds.hard_ceiling:
        return JobAssessment(JobHealth.EXPIRED, last_activity, time_since_activity, "hard_ceiling_exceeded")
    return JobAssessment(JobHealth.STUCK, last_activity, time_since_activity, "threshold_exceeded")


def detect_stuck(
    jobs: list[SyncJob],
    *,
    now: datetime | None = None,
    thresholds: StuckThresholds = DEFAULT_THRESHOLDS,
) -> list[StuckJob]:
    current = now or datetime.now(timezone.utc)
    stuck: list[StuckJob] = []
    for job in jobs:
        assessment = classify_job(job, now=current, thresholds=thresholds)
        if assessment.health is JobHealth.HEALTHY:
            continue
        if assessment.time_since_activity is None:
            minutes = int(thresholds.hard_ceiling.total_seconds() // 60) + 1
        else:
            minutes = round(assessment.time_since_activity.total_seconds() / 60)
        stuck.append(
            StuckJob(
                job=job,
                health=assessment.health,
                last_activity=assessment.last_activity,
                stuck_duration_minutes=minutes,
            )
        )
    return stuck


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _latest(*values: datetime | None) -> datetime | None:
    present = [value for value in values if value is not None]
    return max(present) if present else None

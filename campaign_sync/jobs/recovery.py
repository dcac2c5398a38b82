"""Recovery state machine for stuck platform syncs.

Each invocation is single-shot: detect stuck jobs, then per job either leave it
alone (``detect``), fail it (``reset``), or ask the platform to continue from
its recorded offsets (``resume``). ``auto`` picks between resume and reset from
the job's age and its recent attempt history. Every action taken is appended to
the job's capped attempt log, which is what the next scan reads to decide
whether another resume is still allowed.

A scan claims a per-job lease and re-reads the job before acting on it, so two
overlapping scans never act on the same job twice. A successful resume keeps its
lease until expiry to give the platform time to report progress; any other
outcome releases it. A storage failure on one job is reported for that job and
the scan moves on to the next.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Protocol
from uuid import uuid4

from opentelemetry import trace

from campaign_sync.core.config import Settings
from campaign_sync.jobs.sync_health import (
    RecoveryAttempt,
    StuckJob,
    StuckThresholds,
    SyncJob,
    detect_stuck,
)
from campaign_sync.services.repository import RepositoryError
from campaign_sync.services.sync_client import ContinuationOutcome

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RESUME_ACTIONS = frozenset({"resume"})


class RecoveryAction(str, Enum):
    AUTO = "auto"
    DETECT = "detect"
    RESUME = "resume"
    RESET = "reset"


class ContinuationClient(Protocol):
    async def continue_sync(self, platform: str, payload: dict[str, Any]) -> ContinuationOutcome: ...


@dataclass(slots=True, frozen=True)
class RecoveryPolicy:
    thresholds: StuckThresholds = StuckThresholds()
    max_attempts_per_window: int = 3
    attempt_window: timedelta = timedelta(hours=1)
    attempt_log_size: int = 10
    lease_seconds: int = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> RecoveryPolicy:
        return cls(
            thresholds=StuckThresholds(
                syncing=timedelta(minutes=settings.stuck_syncing_minutes),
                idle=timedelta(minutes=settings.stuck_idle_minutes),
                recent_update=timedelta(minutes=settings.stuck_recent_update_minutes),
                hard_ceiling=timedelta(minutes=settings.stuck_hard_ceiling_minutes),
            ),
            max_attempts_per_window=max(1, settings.recovery_max_attempts_per_window),
            attempt_window=timedelta(minutes=settings.recovery_attempt_window_minutes),
            attempt_log_size=max(1, settings.recovery_attempt_log_size),
            lease_seconds=max(1, settings.recovery_lease_seconds),
        )


@dataclass(slots=True)
class RecoveryResult:
    job_id: str
    platform: str
    workspace_id: str
    action: str
    stuck_duration_minutes: int
    success: bool
    message: str


@dataclass(slots=True)
class RecoveryReport:
    action: RecoveryAction
    stuck_count: int
    results: list[RecoveryResult]


def resume_attempts_in_window(
    attempts: list[RecoveryAttempt],
    *,
    now: datetime,
    window: timedelta,
) -> int:
    cutoff = now - window
    return sum(1 for attempt in attempts if attempt.action in RESUME_ACTIONS and attempt.attempted_at >= cutoff)


def append_capped(attempts: list[RecoveryAttempt], attempt: RecoveryAttempt, *, max_entries: int) -> list[RecoveryAttempt]:
    combined = [*attempts, attempt]
    return combined[-max_entries:] if max_entries > 0 else combined


def build_continuation_payload(job: SyncJob) -> dict[str, Any]:
    progress = job.progress or {}
    payload: dict[str, Any] = {"workspace_id": job.workspace_id}

    if job.platform == "smartlead":
        phase = progress.get("phase")
        if phase == "historical":
            payload["full_backfill"] = True
            payload["continue_from_chunk"] = _as_offset(progress.get("historical_chunk_index"))
        elif phase == "campaigns":
            payload["continue_from_offset"] = _as_offset(progress.get("campaign_offset"))
    elif job.platform == "replyio":
        payload["continue_from_batch"] = _as_offset(progress.get("current_batch"))
    elif job.platform == "nocodb":
        payload["continue_from_offset"] = _as_offset(progress.get("current_offset"))

    payload["is_continuation"] = True
    payload["internal_continuation"] = True
    return payload


class RecoveryOrchestrator:
    def __init__(
        self,
        repository: Any,
        sync_client: ContinuationClient,
        *,
        policy: RecoveryPolicy | None = None,
        lease_owner: str = "campaign-sync-recovery",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.sync_client = sync_client
        self.policy = policy or RecoveryPolicy()
        self.lease_owner = f"{lease_owner}:{uuid4().hex[:12]}"
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def detect(self, *, platform: str | None = None, workspace_id: str | None = None) -> list[StuckJob]:
        jobs = await self.repository.list_active_sync_jobs(platform=platform, workspace_id=workspace_id)
        return detect_stuck(jobs, now=self._clock(), thresholds=self.policy.thresholds)

    async def run(
        self,
        action: RecoveryAction | str = RecoveryAction.AUTO,
        *,
        platform: str | None = None,
        workspace_id: str | None = None,
        force_resume: bool = False,
    ) -> RecoveryReport:
        action = RecoveryAction(action)
        with tracer.start_as_current_span("recovery.run") as span:
            span.set_attribute("recovery.action", action.value)
            stuck_jobs = await self.detect(platform=platform, workspace_id=workspace_id)
            span.set_attribute("recovery.stuck_count", len(stuck_jobs))
            logger.info(
                "recovery scan action=%s platform=%s workspace_id=%s stuck=%s",
                action.value,
                platform or "all",
                workspace_id or "all",
                len(stuck_jobs),
            )

            results: list[RecoveryResult] = []
            for stuck in stuck_jobs:
                if action is RecoveryAction.DETECT:
                    results.append(
                        self._result(
                            stuck,
                            action="detect",
                            success=True,
                            message=f"{stuck.health.value} for {stuck.stuck_duration_minutes} minutes",
                        )
                    )
                    continue
                with tracer.start_as_current_span("recovery.job") as job_span:
                    job_span.set_attribute("sync.job_id", stuck.job.id)
                    job_span.set_attribute("sync.platform", stuck.job.platform)
                    try:
                        result = await self._recover(stuck, action=action, force_resume=force_resume)
                    except RepositoryError as exc:
                        logger.error("recovery storage failure job_id=%s: %s", stuck.job.id, exc)
                        result = self._result(
                            stuck,
                            action="storage_error",
                            success=False,
                            message=f"storage_error: {exc}",
                        )
                    job_span.set_attribute("recovery.result_action", result.action)
                results.append(result)
                logger.info(
                    "recovery %s platform=%s workspace_id=%s success=%s: %s",
                    result.action,
                    result.platform,
                    result.workspace_id,
                    result.success,
                    result.message,
                )

            return RecoveryReport(action=action, stuck_count=len(stuck_jobs), results=results)

    async def _recover(self, stuck: StuckJob, *, action: RecoveryAction, force_resume: bool) -> RecoveryResult:
        claimed = await self.repository.claim_recovery_lease(
            stuck.job.id,
            owner=self.lease_owner,
            lease_seconds=self.policy.lease_seconds,
        )
        if not claimed:
            return self._result(
                stuck,
                action="skipped",
                success=False,
                message="Recovery lease held by another scan",
            )

        result: RecoveryResult | None = None
        try:
            current = await self._refresh(stuck)
            if current is None:
                result = self._result(
                    stuck,
                    action="skipped",
                    success=False,
                    message="Job is no longer stuck",
                )
            elif action is RecoveryAction.RESET:
                result = await self._reset(current, action="reset", message="Reset to failed status")
            elif action is RecoveryAction.RESUME:
                result = await self._resume_or_reset(current)
            else:
                result = await self._auto(current, force_resume=force_resume)
            return result
        finally:
            if result is None or not (result.action == "resume" and result.success):
                await self.repository.release_recovery_lease(stuck.job.id, owner=self.lease_owner)

    async def _refresh(self, stuck: StuckJob) -> StuckJob | None:
        job = await self.repository.get_sync_job(stuck.job.id)
        if job is None:
            return None
        refreshed = detect_stuck([job], now=self._clock(), thresholds=self.policy.thresholds)
        return refreshed[0] if refreshed else None

    async def _auto(self, stuck: StuckJob, *, force_resume: bool) -> RecoveryResult:
        if stuck.expired and not force_resume:
            ceiling_minutes = int(self.policy.thresholds.hard_ceiling.total_seconds() // 60)
            return await self._reset(
                stuck,
                action="reset",
                message=f"Reset after being stuck for {ceiling_minutes}+ minutes",
            )
        return await self._resume_or_reset(stuck)

    async def _resume_or_reset(self, stuck: StuckJob) -> RecoveryResult:
        recent_attempts = resume_attempts_in_window(
            stuck.recovery_attempts,
            now=self._clock(),
            window=self.policy.attempt_window,
        )
        if recent_attempts >= self.policy.max_attempts_per_window:
            return await self._reset(
                stuck,
                action="reset",
                message=(
                    f"Reset after {recent_attempts} resume attempts in the last "
                    f"{int(self.policy.attempt_window.total_seconds() // 60)} minutes"
                ),
            )

        payload = build_continuation_payload(stuck.job)
        outcome = await self.sync_client.continue_sync(stuck.job.platform, payload)
        try:
            await self._log_attempt(stuck, action="resume", success=outcome.success, message=outcome.message)
        except RepositoryError as exc:
            if not outcome.success:
                raise
            logger.error("resume sent but attempt not recorded job_id=%s: %s", stuck.job.id, exc)
            return self._result(
                stuck,
                action="resume",
                success=True,
                message=f"{outcome.message} (storage_error: attempt not recorded: {exc})",
            )
        if outcome.success:
            return self._result(stuck, action="resume", success=True, message=outcome.message)

        return await self._reset(
            stuck,
            action="reset_after_failed_resume",
            message=f"Resume failed, reset instead: {outcome.message}",
        )

    async def _reset(self, stuck: StuckJob, *, action: str, message: str) -> RecoveryResult:
        now = self._clock()
        attempt = RecoveryAttempt(attempted_at=now, action=action, success=True, message=message)
        await self.repository.mark_sync_failed(
            stuck.job.id,
            failure_reason=f"Sync stuck for {stuck.stuck_duration_minutes} minutes with no progress",
            failed_at=now,
            attempt=attempt,
            max_entries=self.policy.attempt_log_size,
        )
        stuck.job.recovery_attempts = append_capped(
            stuck.job.recovery_attempts,
            attempt,
            max_entries=self.policy.attempt_log_size,
        )
        return self._result(stuck, action=action, success=True, message=message)

    async def _log_attempt(self, stuck: StuckJob, *, action: str, success: bool, message: str) -> None:
        attempt = RecoveryAttempt(attempted_at=self._clock(), action=action, success=success, message=message)
        stuck.job.recovery_attempts = await self.repository.append_recovery_attempt(
            stuck.job.id,
            attempt,
            max_entries=self.policy.attempt_log_size,
        )

    @staticmethod
    def _result(stuck: StuckJob, *, action: str, success: bool, message: str) -> RecoveryResult:
        return RecoveryResult(
            job_id=stuck.job.id,
            platform=stuck.job.platform,
            workspace_id=stuck.job.workspace_id,
            action=action,
            stuck_duration_minutes=stuck.stuck_duration_minutes,
            success=success,
            message=message,
        )


def _as_offset(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0

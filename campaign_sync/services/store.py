from __future__ import annotations

import copy
import hashlib
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from campaign_sync.jobs.sync_health import ACTIVE_SYNC_STATUSES, RecoveryAttempt, SyncJob
from campaign_sync.matching.matcher import EngagementCandidate
from campaign_sync.matching.normalize import build_alias_map
from campaign_sync.services.repository import (
    UNASSIGNED_ENGAGEMENT_ID,
    CampaignRecord,
    CampaignSnapshot,
    MachineCredentialRecord,
    RepositoryNotFoundError,
)


class InMemoryStore:
    """Coroutine-compatible stand-in for ``PostgresRepository`` used by tests and local runs."""

    def __init__(self, unassigned_engagement_id: str = UNASSIGNED_ENGAGEMENT_ID) -> None:
        self.unassigned_engagement_id = unassigned_engagement_id
        self.engagements: dict[str, dict] = {}
        self.campaigns: dict[str, dict] = {}
        self.aliases: dict[str, list[tuple[str, str]]] = {}
        self.sync_jobs: dict[str, SyncJob] = {}
        self.leases: dict[str, tuple[str, datetime]] = {}
        self.credentials: dict[str, MachineCredentialRecord] = {}
        self.link_calls: list[tuple[list[str], str]] = []

    async def close(self) -> None:
        return None

    def add_machine_credential(self, module_id: str, api_key: str, scopes: set[str]) -> None:
        self.credentials[module_id] = MachineCredentialRecord(
            module_db_id=str(uuid4()),
            module_id=module_id,
            scopes=sorted(scopes),
            key_hash=hashlib.sha256(api_key.encode("utf-8")).hexdigest(),
        )

    def add_engagement(
        self,
        workspace_id: str,
        name: str,
        *,
        sponsor_name: str | None = None,
        portfolio_company: str | None = None,
        engagement_id: str | None = None,
    ) -> str:
        engagement_id = engagement_id or str(uuid4())
        self.engagements[engagement_id] = {
            "id": engagement_id,
            "workspace_id": workspace_id,
            "name": name,
            "sponsor_name": sponsor_name,
            "portfolio_company": portfolio_company,
        }
        return engagement_id

    def add_campaign(
        self,
        workspace_id: str,
        name: str,
        *,
        engagement_id: str | None = None,
        platform: str | None = None,
        external_id: str | None = None,
    ) -> str:
        campaign_id = str(uuid4())
        self.campaigns[campaign_id] = {
            "id": campaign_id,
            "workspace_id": workspace_id,
            "name": name,
            "engagement_id": engagement_id or self.unassigned_engagement_id,
            "platform": platform,
            "external_id": external_id,
            "status": None,
            "counters": {},
        }
        return campaign_id

    def add_alias(self, workspace_id: str, alias: str, canonical_name: str) -> None:
        self.aliases.setdefault(workspace_id, []).append((alias, canonical_name))

    def add_sync_job(self, job: SyncJob) -> SyncJob:
        self.sync_jobs[job.id] = job
        return job

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        record = self.credentials.get(module_id)
        return [record] if record else []

    async def list_engagements(self, workspace_id: str) -> list[EngagementCandidate]:
        rows = [
            row
            for row in self.engagements.values()
            if row["workspace_id"] == workspace_id and row["id"] != self.unassigned_engagement_id
        ]
        return [
            EngagementCandidate(
                engagement_id=row["id"],
                name=row["name"],
                sponsor_name=row["sponsor_name"],
                portfolio_company=row["portfolio_company"],
            )
            for row in sorted(rows, key=lambda item: item["name"])
        ]

    async def list_unassigned_campaigns(self, workspace_id: str) -> list[CampaignRecord]:
        rows = [
            row
            for row in self.campaigns.values()
            if row["workspace_id"] == workspace_id and row["engagement_id"] == self.unassigned_engagement_id
        ]
        return [
            CampaignRecord(
                id=row["id"],
                workspace_id=row["workspace_id"],
                name=row["name"],
                engagement_id=row["engagement_id"],
                platform=row["platform"],
                external_id=row["external_id"],
            )
            for row in sorted(rows, key=lambda item: item["name"])
        ]

    async def get_alias_map(self, workspace_id: str) -> dict[str, str]:
        return build_alias_map(self.aliases.get(workspace_id, []))

    async def link_campaigns(self, campaign_ids: list[str], engagement_id: str) -> list[str]:
        if engagement_id not in self.engagements:
            raise RepositoryNotFoundError(f"engagement not found: {engagement_id}")
        self.link_calls.append((list(campaign_ids), engagement_id))
        linked: list[str] = []
        for campaign_id in campaign_ids:
            row = self.campaigns.get(campaign_id)
            if row is None or row["engagement_id"] not in {engagement_id, self.unassigned_engagement_id}:
                continue
            row["engagement_id"] = engagement_id
            linked.append(campaign_id)
        return linked

    async def upsert_campaign_snapshots(self, workspace_id: str, snapshots: list[CampaignSnapshot]) -> int:
        for snapshot in snapshots:
            existing = next(
                (
                    row
                    for row in self.campaigns.values()
                    if row["workspace_id"] == workspace_id
                    and row["platform"] == snapshot.platform
                    and row["external_id"] == snapshot.external_id
                ),
                None,
            )
            if existing is None:
                campaign_id = self.add_campaign(
                    workspace_id,
                    snapshot.name,
                    platform=snapshot.platform,
                    external_id=snapshot.external_id,
                )
                existing = self.campaigns[campaign_id]
            existing["name"] = snapshot.name
            existing["status"] = snapshot.status
            existing["counters"] = dict(snapshot.counters)
        return len(snapshots)

    async def list_active_sync_jobs(
        self,
        *,
        platform: str | None = None,
        workspace_id: str | None = None,
    ) -> list[SyncJob]:
        return [
            copy.deepcopy(job)
            for job in self.sync_jobs.values()
            if job.status in ACTIVE_SYNC_STATUSES
            and (platform is None or job.platform == platform)
            and (workspace_id is None or job.workspace_id == workspace_id)
        ]

    async def get_sync_job(self, job_id: str) -> SyncJob | None:
        job = self.sync_jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    async def claim_recovery_lease(self, job_id: str, *, owner: str, lease_seconds: int) -> bool:
        now = datetime.now(timezone.utc)
        held = self.leases.get(job_id)
        if held is not None and held[0] != owner and held[1] > now:
            return False
        self.leases[job_id] = (owner, now + timedelta(seconds=lease_seconds))
        return True

    async def release_recovery_lease(self, job_id: str, *, owner: str) -> None:
        held = self.leases.get(job_id)
        if held is not None and held[0] == owner:
            del self.leases[job_id]

    async def append_recovery_attempt(
        self,
        job_id: str,
        attempt: RecoveryAttempt,
        *,
        max_entries: int,
    ) -> list[RecoveryAttempt]:
        job = self._get_sync_job(job_id)
        job.recovery_attempts = [*job.recovery_attempts, attempt][-max_entries:]
        return list(job.recovery_attempts)

    async def mark_sync_failed(
        self,
        job_id: str,
        *,
        failure_reason: str,
        failed_at: datetime,
        attempt: RecoveryAttempt,
        max_entries: int,
    ) -> None:
        job = self._get_sync_job(job_id)
        job.status = "failed"
        job.progress = {
            **job.progress,
            "failed_at": failed_at.isoformat(),
            "failure_reason": failure_reason,
            "recovery_attempted": True,
            "can_retry": True,
        }
        job.recovery_attempts = [*job.recovery_attempts, attempt][-max_entries:]

    def _get_sync_job(self, job_id: str) -> SyncJob:
        job = self.sync_jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError(f"sync job not found: {job_id}")
        return job

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from campaign_sync.core.config import get_settings
from campaign_sync.jobs.sync_health import ACTIVE_SYNC_STATUSES, RecoveryAttempt, SyncJob, parse_timestamp
from campaign_sync.matching.matcher import EngagementCandidate
from campaign_sync.matching.normalize import build_alias_map

UNASSIGNED_ENGAGEMENT_ID = "00000000-0000-0000-0000-000000000000"


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str


@dataclass(slots=True)
class CampaignRecord:
    id: str
    workspace_id: str
    name: str
    engagement_id: str
    platform: str | None = None
    external_id: str | None = None


@dataclass(slots=True)
class CampaignSnapshot:
    platform: str
    external_id: str
    name: str
    status: str | None = None
    counters: dict[str, int] = field(default_factory=dict)


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        unassigned_engagement_id: str = UNASSIGNED_ENGAGEMENT_ID,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.unassigned_engagement_id = unassigned_engagement_id
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        rows = await self._fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    async def list_engagements(self, workspace_id: str) -> list[EngagementCandidate]:
        rows = await self._fetch(
            """
            select id::text as id, name, sponsor_name, portfolio_company
            from engagements
            where workspace_id = $1::uuid
              and id <> $2::uuid
            order by name
            """,
            workspace_id,
            self.unassigned_engagement_id,
        )
        return [
            EngagementCandidate(
                engagement_id=row["id"],
                name=row["name"] or "",
                sponsor_name=row["sponsor_name"],
                portfolio_company=row["portfolio_company"],
            )
            for row in rows
        ]

    async def list_unassigned_campaigns(self, workspace_id: str) -> list[CampaignRecord]:
        rows = await self._fetch(
            """
            select
              id::text as id,
              workspace_id::text as workspace_id,
              name,
              engagement_id::text as engagement_id,
              platform,
              external_id
            from campaigns
            where workspace_id = $1::uuid
              and engagement_id = $2::uuid
            order by name
            """,
            workspace_id,
            self.unassigned_engagement_id,
        )
        return [self._campaign_row_to_record(row) for row in rows]

    async def get_alias_map(self, workspace_id: str) -> dict[str, str]:
        rows = await self._fetch(
            """
            select alias, canonical_name
            from campaign_aliases
            where workspace_id = $1::uuid
            """,
            workspace_id,
        )
        return build_alias_map((row["alias"], row["canonical_name"]) for row in rows)

    async def link_campaigns(self, campaign_ids: list[str], engagement_id: str) -> list[str]:
        """Point campaigns at ``engagement_id`` when they are unassigned or already on it.

        Returns the ids that now carry the link; ids relinked elsewhere in the meantime are left alone.
        """
        if not campaign_ids:
            return []
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                update campaigns
                set engagement_id = $2::uuid,
                    updated_at = now()
                where id = any($1::uuid[])
                  and engagement_id in ($2::uuid, $3::uuid)
                returning id::text as id
                """,
                campaign_ids,
                engagement_id,
                self.unassigned_engagement_id,
            )
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryNotFoundError(f"engagement not found: {engagement_id}") from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(str(exc)) from exc
        except (pg_exc.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError(f"failed to link campaigns: {exc}") from exc
        return [row["id"] for row in rows]

    async def upsert_campaign_snapshots(self, workspace_id: str, snapshots: list[CampaignSnapshot]) -> int:
        if not snapshots:
            return 0
        pool = await self._get_pool()
        records = [
            (
                workspace_id,
                snapshot.platform,
                snapshot.external_id,
                snapshot.name,
                snapshot.status,
                json.dumps(snapshot.counters),
                self.unassigned_engagement_id,
            )
            for snapshot in snapshots
        ]
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(
                        """
                        insert into campaigns (
                          workspace_id, platform, external_id, name, status, counters, engagement_id, synced_at
                        )
                        values ($1::uuid, $2, $3, $4, $5, $6::jsonb, $7::uuid, now())
                        on conflict (workspace_id, platform, external_id) do update
                        set name = excluded.name,
                            status = excluded.status,
                            counters = excluded.counters,
                            synced_at = excluded.synced_at
                        """,
                        records,
                    )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(str(exc)) from exc
        except (pg_exc.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError(f"failed to upsert campaign snapshots: {exc}") from exc
        return len(records)

    async def list_active_sync_jobs(
        self,
        *,
        platform: str | None = None,
        workspace_id: str | None = None,
    ) -> list[SyncJob]:
        rows = await self._fetch(
            """
            select
              id::text as id,
              platform,
              workspace_id::text as workspace_id,
              sync_status,
              sync_progress,
              updated_at,
              recovery_attempts
            from api_connections
            where is_active = true
              and sync_status = any($1::text[])
              and ($2::text is null or platform = $2)
              and ($3::uuid is null or workspace_id = $3::uuid)
            order by updated_at nulls first
            """,
            sorted(ACTIVE_SYNC_STATUSES),
            platform,
            workspace_id,
        )
        return [self._sync_job_row_to_model(row) for row in rows]

    async def get_sync_job(self, job_id: str) -> SyncJob | None:
        rows = await self._fetch(
            """
            select
              id::text as id,
              platform,
              workspace_id::text as workspace_id,
              sync_status,
              sync_progress,
              updated_at,
              recovery_attempts
            from api_connections
            where id = $1::uuid
              and is_active = true
            """,
            job_id,
        )
        return self._sync_job_row_to_model(rows[0]) if rows else None

    async def claim_recovery_lease(self, job_id: str, *, owner: str, lease_seconds: int) -> bool:
        pool = await self._get_pool()
        claimed = await pool.fetchval(
            """
            update api_connections
            set recovery_lease_owner = $2,
                recovery_lease_expires_at = now() + make_interval(secs => $3)
            where id = $1::uuid
              and (
                recovery_lease_expires_at is null
                or recovery_lease_expires_at <= now()
                or recovery_lease_owner = $2
              )
            returning id::text
            """,
            job_id,
            owner,
            float(lease_seconds),
        )
        return claimed is not None

    async def release_recovery_lease(self, job_id: str, *, owner: str) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update api_connections
            set recovery_lease_owner = null,
                recovery_lease_expires_at = null
            where id = $1::uuid
              and recovery_lease_owner = $2
            """,
            job_id,
            owner,
        )

    async def append_recovery_attempt(
        self,
        job_id: str,
        attempt: RecoveryAttempt,
        *,
        max_entries: int,
    ) -> list[RecoveryAttempt]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                existing = await self._lock_attempts(conn, job_id)
                attempts = [*existing, attempt][-max_entries:]
                await conn.execute(
                    "update api_connections set recovery_attempts = $2::jsonb where id = $1::uuid",
                    job_id,
                    json.dumps([row.to_json() for row in attempts]),
                )
        return attempts

    async def mark_sync_failed(
        self,
        job_id: str,
        *,
        failure_reason: str,
        failed_at: datetime,
        attempt: RecoveryAttempt,
        max_entries: int,
    ) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                existing = await self._lock_attempts(conn, job_id)
                attempts = [*existing, attempt][-max_entries:]
                await conn.execute(
                    """
                    update api_connections
                    set sync_status = 'failed',
                        sync_progress = coalesce(sync_progress, '{}'::jsonb) || $2::jsonb,
                        recovery_attempts = $3::jsonb,
                        updated_at = now()
                    where id = $1::uuid
                    """,
                    job_id,
                    json.dumps(
                        {
                            "failed_at": failed_at.isoformat(),
                            "failure_reason": failure_reason,
                            "recovery_attempted": True,
                            "can_retry": True,
                        }
                    ),
                    json.dumps([row.to_json() for row in attempts]),
                )

    async def _lock_attempts(self, conn: asyncpg.Connection, job_id: str) -> list[RecoveryAttempt]:
        row = await conn.fetchrow(
            "select recovery_attempts from api_connections where id = $1::uuid for update",
            job_id,
        )
        if row is None:
            raise RepositoryNotFoundError(f"sync job not found: {job_id}")
        return self._coerce_attempts(row["recovery_attempts"])

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            return await pool.fetch(query, *args)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(str(exc)) from exc
        except (pg_exc.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError(f"database query failed: {exc}") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        if not self.database_url:
            raise RepositoryUnavailableError("database is not configured")
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
        except (OSError, pg_exc.PostgresError) as exc:
            raise RepositoryUnavailableError(f"database connection failed: {exc}") from exc
        return self._pool

    @staticmethod
    def _campaign_row_to_record(row: asyncpg.Record) -> CampaignRecord:
        return CampaignRecord(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"] or "",
            engagement_id=row["engagement_id"],
            platform=row["platform"],
            external_id=row["external_id"],
        )

    def _sync_job_row_to_model(self, row: asyncpg.Record) -> SyncJob:
        return SyncJob(
            id=row["id"],
            platform=row["platform"],
            workspace_id=row["workspace_id"],
            status=row["sync_status"],
            progress=self._coerce_json_dict(row["sync_progress"]),
            updated_at=parse_timestamp(row["updated_at"]),
            recovery_attempts=self._coerce_attempts(row["recovery_attempts"]),
        )

    @classmethod
    def _coerce_attempts(cls, value: Any) -> list[RecoveryAttempt]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        attempts = [RecoveryAttempt.from_json(item) for item in value]
        return [attempt for attempt in attempts if attempt is not None]

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        unassigned_engagement_id=settings.unassigned_engagement_id,
    )

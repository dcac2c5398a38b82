from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from campaign_sync.jobs.sync_health import RecoveryAttempt
from campaign_sync.services.reconciliation import reconcile_workspace
from campaign_sync.services.repository import UNASSIGNED_ENGAGEMENT_ID, PostgresRepository, RepositoryValidationError

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("CS_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require CS_DATABASE_URL or DATABASE_URL")
    return url


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _seed(database_url: str, workspace_id: str) -> dict[str, str]:
    conn = await asyncpg.connect(database_url)
    try:
        engagement_id = await conn.fetchval(
            """
            insert into engagements (workspace_id, name, sponsor_name, portfolio_company)
            values ($1::uuid, 'Acme / Roadrunner', 'Acme', 'Roadrunner')
            returning id::text
            """,
            workspace_id,
        )
        campaign_id = await conn.fetchval(
            """
            insert into campaigns (workspace_id, name, engagement_id)
            values ($1::uuid, '[Ended] Acme Capital - Roadrunner LLC - Tier 2', $2::uuid)
            returning id::text
            """,
            workspace_id,
            UNASSIGNED_ENGAGEMENT_ID,
        )
        connection_id = await conn.fetchval(
            """
            insert into api_connections (workspace_id, platform, sync_status, updated_at)
            values ($1::uuid, 'smartlead', 'syncing', now() - interval '45 minutes')
            returning id::text
            """,
            workspace_id,
        )
    finally:
        await conn.close()
    return {"engagement": engagement_id, "campaign": campaign_id, "connection": connection_id}


def test_reconcile_and_recovery_against_postgres(database_url: str) -> None:
    workspace_id = str(uuid.uuid4())
    ids = _run(_seed(database_url, workspace_id))

    async def scenario() -> None:
        repository = PostgresRepository(database_url, min_pool_size=1, max_pool_size=2)
        try:
            report = await reconcile_workspace(repository, workspace_id)
            assert report.campaigns_linked == 1
            assert report.linked_details[0].engagement_id == ids["engagement"]
            assert (await reconcile_workspace(repository, workspace_id)).campaigns_linked == 0

            jobs = await repository.list_active_sync_jobs(workspace_id=workspace_id)
            assert [job.id for job in jobs] == [ids["connection"]]

            assert await repository.claim_recovery_lease(ids["connection"], owner="scan-a", lease_seconds=60)
            assert not await repository.claim_recovery_lease(ids["connection"], owner="scan-b", lease_seconds=60)
            await repository.release_recovery_lease(ids["connection"], owner="scan-a")
            assert await repository.claim_recovery_lease(ids["connection"], owner="scan-b", lease_seconds=60)
            await repository.release_recovery_lease(ids["connection"], owner="scan-b")

            now = datetime.now(timezone.utc)
            for index in range(3):
                await repository.append_recovery_attempt(
                    ids["connection"],
                    RecoveryAttempt(attempted_at=now, action="resume", success=False, message=str(index)),
                    max_entries=2,
                )
            await repository.mark_sync_failed(
                ids["connection"],
                failure_reason="Sync stuck for 45 minutes with no progress",
                failed_at=now,
                attempt=RecoveryAttempt(attempted_at=now, action="reset", success=True, message="reset"),
                max_entries=2,
            )
            assert await repository.list_active_sync_jobs(workspace_id=workspace_id) == []
            refreshed = await repository.get_sync_job(ids["connection"])
            assert refreshed is not None
            assert refreshed.status == "failed"
            assert [attempt.action for attempt in refreshed.recovery_attempts] == ["resume", "reset"]
            with pytest.raises(RepositoryValidationError):
                await repository.list_engagements("not-a-uuid")
        finally:
            await repository.close()

    _run(scenario())

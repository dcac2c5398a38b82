from __future__ import annotations

from functools import lru_cache
import logging
from typing import Any

import httpx

from campaign_sync.core.config import Settings, get_settings
from campaign_sync.services.repository import CampaignSnapshot, RepositoryError

logger = logging.getLogger(__name__)

SMARTLEAD_COUNTER_COLUMNS = {
    "leads_in_progress": "Leads in Progress",
    "leads_completed": "Leads Completed",
    "leads_interested": "Leads Interested",
    "leads_not_started": "Leads Not Started",
    "leads_paused": "Leads Paused",
    "leads_stopped": "Leads Stopped",
    "leads_blocked": "Leads Blocked",
}

REPLYIO_COUNTER_COLUMNS = {
    "people_count": "People Count",
    "people_active": "People Active",
    "people_finished": "People Finished",
    "people_paused": "People Paused",
    "deliveries": "# of Deliveries",
    "bounces": "# of Bounces",
    "replies": "# of Replies",
    "ooos": "# of OOOs",
    "optouts": "# of OptOuts",
}

COUNTER_COLUMNS = {
    "smartlead": SMARTLEAD_COUNTER_COLUMNS,
    "replyio": REPLYIO_COUNTER_COLUMNS,
}


class NocoDBClient:
    def __init__(
        self,
        base_url: str,
        api_token: str,
        *,
        page_size: int = 200,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"xc-token": api_token, "Content-Type": "application/json"}
        self.page_size = max(1, page_size)
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def fetch_all_records(self, table_id: str) -> list[dict[str, Any]]:
        if self._client is not None:
            return await self._fetch_pages(self._client, table_id)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await self._fetch_pages(client, table_id)

    async def _fetch_pages(self, client: httpx.AsyncClient, table_id: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        offset = 0
        while True:
            response = await client.get(
                f"{self.base_url}/api/v2/tables/{table_id}/records",
                params={"limit": self.page_size, "offset": offset},
                headers=self.headers,
            )
            response.raise_for_status()
            payload = response.json()
            page = payload.get("list") if isinstance(payload, dict) else None
            rows = [row for row in (page or []) if isinstance(row, dict)]
            records.extend(rows)
            logger.debug("fetched nocodb page table=%s offset=%s rows=%s", table_id, offset, len(rows))
            if len(page or []) < self.page_size:
                return records
            offset += self.page_size


def map_snapshot(platform: str, record: dict[str, Any]) -> CampaignSnapshot | None:
    external_id = _as_text(record.get("Campaign Id"))
    name = _as_text(record.get("Campaign Name"))
    if not external_id or not name:
        return None
    columns = COUNTER_COLUMNS.get(platform, {})
    return CampaignSnapshot(
        platform=platform,
        external_id=external_id,
        name=name,
        status=_as_text(record.get("Status")),
        counters={key: _as_count(record.get(column)) for key, column in columns.items()},
    )


async def import_campaign_snapshots(
    repository: Any,
    client: NocoDBClient,
    workspace_id: str,
    *,
    tables: dict[str, str],
    batch_size: int = 100,
) -> dict[str, dict[str, int]]:
    """Pull campaign rows per platform table and upsert them; a failed batch does not stop the rest."""
    batch_size = max(1, batch_size)
    results: dict[str, dict[str, int]] = {}
    for platform, table_id in tables.items():
        counts = {"fetched": 0, "upserted": 0, "errors": 0}
        results[platform] = counts
        try:
            records = await client.fetch_all_records(table_id)
        except httpx.HTTPError as exc:
            logger.error("nocodb fetch failed platform=%s table=%s: %s", platform, table_id, exc)
            counts["errors"] += 1
            continue

        counts["fetched"] = len(records)
        snapshots = [snapshot for snapshot in (map_snapshot(platform, row) for row in records) if snapshot]
        for start in range(0, len(snapshots), batch_size):
            batch = snapshots[start : start + batch_size]
            try:
                counts["upserted"] += await repository.upsert_campaign_snapshots(workspace_id, batch)
            except RepositoryError as exc:
                logger.error("snapshot batch upsert failed platform=%s offset=%s: %s", platform, start, exc)
                counts["errors"] += 1

        logger.info(
            "snapshot import platform=%s fetched=%s upserted=%s errors=%s",
            platform,
            counts["fetched"],
            counts["upserted"],
            counts["errors"],
        )
    return results


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def snapshot_tables(settings: Settings) -> dict[str, str]:
    tables = {
        "smartlead": settings.nocodb_smartlead_table_id,
        "replyio": settings.nocodb_replyio_table_id,
    }
    return {platform: table_id for platform, table_id in tables.items() if table_id}


@lru_cache
def get_nocodb_client() -> NocoDBClient | None:
    settings = get_settings()
    if not settings.nocodb_base_url or not settings.nocodb_api_token:
        return None
    return NocoDBClient(
        settings.nocodb_base_url,
        settings.nocodb_api_token,
        page_size=settings.nocodb_page_size,
    )

from __future__ import annotations

import asyncio

import httpx

from campaign_sync.services.repository import RepositoryUnavailableError
from campaign_sync.services.snapshots import NocoDBClient, import_campaign_snapshots, map_snapshot
from campaign_sync.services.store import InMemoryStore


def _smartlead_row(index: int) -> dict:
    return {
        "Campaign Id": str(100 + index),
        "Campaign Name": f"Acme - Portfolio {index}",
        "Status": "ACTIVE",
        "Leads Completed": index,
        "Leads Interested": "3",
    }


def _paged_handler(rows: list[dict], seen_offsets: list[int]):
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["xc-token"] == "token"
        limit = int(request.url.params["limit"])
        offset = int(request.url.params["offset"])
        seen_offsets.append(offset)
        return httpx.Response(status_code=200, json={"list": rows[offset : offset + limit]}, request=request)

    return handler


def test_fetch_all_records_pages_until_short_page() -> None:
    rows = [_smartlead_row(index) for index in range(5)]
    offsets: list[int] = []

    async def run() -> list[dict]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(_paged_handler(rows, offsets))) as client:
            nocodb = NocoDBClient("https://nocodb.example.com", "token", page_size=2, client=client)
            return await nocodb.fetch_all_records("tbl_smartlead")

    records = asyncio.run(run())

    assert len(records) == 5
    assert offsets == [0, 2, 4]


def test_map_snapshot_reads_counters_and_skips_incomplete_rows() -> None:
    snapshot = map_snapshot("smartlead", _smartlead_row(2))

    assert snapshot is not None
    assert snapshot.external_id == "102"
    assert snapshot.status == "ACTIVE"
    assert snapshot.counters["leads_completed"] == 2
    assert snapshot.counters["leads_interested"] == 3
    assert snapshot.counters["leads_blocked"] == 0
    assert map_snapshot("smartlead", {"Campaign Name": "no id"}) is None


def test_import_upserts_in_batches_and_counts_failures() -> None:
    rows = [_smartlead_row(index) for index in range(5)]
    store = InMemoryStore()
    original = store.upsert_campaign_snapshots
    batches: list[int] = []

    async def flaky_upsert(workspace_id: str, snapshots: list) -> int:
        batches.append(len(snapshots))
        if len(batches) == 2:
            raise RepositoryUnavailableError("write failed")
        return await original(workspace_id, snapshots)

    store.upsert_campaign_snapshots = flaky_upsert  # type: ignore[method-assign]

    async def run() -> dict:
        async with httpx.AsyncClient(transport=httpx.MockTransport(_paged_handler(rows, []))) as client:
            nocodb = NocoDBClient("https://nocodb.example.com", "token", page_size=10, client=client)
            return await import_campaign_snapshots(
                store,
                nocodb,
                "ws-1",
                tables={"smartlead": "tbl_smartlead"},
                batch_size=2,
            )

    result = asyncio.run(run())

    assert batches == [2, 2, 1]
    assert result == {"smartlead": {"fetched": 5, "upserted": 3, "errors": 1}}
    assert len(store.campaigns) == 3


def test_import_counts_fetch_failure_and_continues_with_next_table() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if "tbl_broken" in request.url.path:
            return httpx.Response(status_code=500, request=request)
        return httpx.Response(status_code=200, json={"list": [_smartlead_row(1)]}, request=request)

    async def run() -> dict:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            nocodb = NocoDBClient("https://nocodb.example.com", "token", client=client)
            return await import_campaign_snapshots(
                InMemoryStore(),
                nocodb,
                "ws-1",
                tables={"replyio": "tbl_broken", "smartlead": "tbl_ok"},
            )

    result = asyncio.run(run())

    assert result["replyio"] == {"fetched": 0, "upserted": 0, "errors": 1}
    assert result["smartlead"] == {"fetched": 1, "upserted": 1, "errors": 0}


def test_snapshot_upsert_updates_existing_campaign() -> None:
    store = InMemoryStore()
    campaign_id = store.add_campaign("ws-1", "Old name", platform="smartlead", external_id="101")
    snapshot = map_snapshot("smartlead", _smartlead_row(1))

    asyncio.run(store.upsert_campaign_snapshots("ws-1", [snapshot]))

    assert len(store.campaigns) == 1
    assert store.campaigns[campaign_id]["name"] == "Acme - Portfolio 1"
    assert store.campaigns[campaign_id]["counters"]["leads_completed"] == 1

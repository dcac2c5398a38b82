from __future__ import annotations

import asyncio

from campaign_sync.services.reconciliation import ReconciliationReport, reconcile_workspace
from campaign_sync.services.repository import RepositoryUnavailableError
from campaign_sync.services.store import InMemoryStore

WORKSPACE = "ws-1"


def _seeded_store() -> tuple[InMemoryStore, dict[str, str]]:
    store = InMemoryStore()
    ids = {
        "acme": store.add_engagement(WORKSPACE, "Acme / Roadrunner", sponsor_name="Acme", portfolio_company="Roadrunner"),
        "zenith": store.add_engagement(WORKSPACE, "Zenith / Orion", sponsor_name="Zenith", portfolio_company="Orion"),
    }
    store.add_engagement("ws-2", "Other / Roadrunner", sponsor_name="Acme", portfolio_company="Roadrunner")
    return store, ids


def _run(store: InMemoryStore, **kwargs) -> ReconciliationReport:
    return asyncio.run(reconcile_workspace(store, WORKSPACE, **kwargs))


def test_single_candidate_campaigns_link_exactly_once() -> None:
    store, ids = _seeded_store()
    first = store.add_campaign(WORKSPACE, "[Ended] Acme Capital - Roadrunner LLC - Tier 2")
    second = store.add_campaign(WORKSPACE, "Acme - Roadrunner - Email")

    report = _run(store)

    assert report.campaigns_linked == 2
    assert report.campaigns_unlinked == 0
    assert store.campaigns[first]["engagement_id"] == ids["acme"]
    assert store.campaigns[second]["engagement_id"] == ids["acme"]
    assert len(store.link_calls) == 1
    assert report.linked_details[0].engagement == "Acme / Roadrunner"
    assert sorted(report.linked_details[0].campaigns) == sorted(
        ["[Ended] Acme Capital - Roadrunner LLC - Tier 2", "Acme - Roadrunner - Email"]
    )


def test_rerun_is_idempotent() -> None:
    store, _ = _seeded_store()
    store.add_campaign(WORKSPACE, "Acme - Roadrunner")

    _run(store)
    rerun = _run(store)

    assert rerun.campaigns_linked == 0
    assert rerun.campaigns_unlinked == 0
    assert len(store.link_calls) == 1


def test_dry_run_reports_without_writing() -> None:
    store, _ = _seeded_store()
    campaign_id = store.add_campaign(WORKSPACE, "Zenith - Orion Labs")

    report = _run(store, dry_run=True)

    assert report.dry_run
    assert report.campaigns_linked == 1
    assert store.link_calls == []
    assert store.campaigns[campaign_id]["engagement_id"] == store.unassigned_engagement_id


def test_unresolved_campaigns_carry_reason_codes() -> None:
    store, _ = _seeded_store()
    store.add_engagement(WORKSPACE, "Acme / Roadrunner (dup)", sponsor_name="Acme Capital", portfolio_company="Roadrunner")
    store.add_campaign(WORKSPACE, "Acme - Roadrunner")
    store.add_campaign(WORKSPACE, "Acme Capital - Tier 2")
    store.add_campaign(WORKSPACE, "Nobody - Nothing")

    report = _run(store)

    codes = {row.name: row.code for row in report.ambiguous}
    assert codes == {
        "Acme - Roadrunner": "ambiguous_match",
        "Acme Capital - Tier 2": "insufficient_segments",
        "Nobody - Nothing": "no_match",
    }
    ambiguous = next(row for row in report.ambiguous if row.code == "ambiguous_match")
    assert len(ambiguous.candidates) == 2
    assert report.campaigns_linked == 0
    assert report.campaigns_unlinked == 3


def test_workspace_aliases_are_applied() -> None:
    store, ids = _seeded_store()
    store.add_alias(WORKSPACE, "ZNT", "Zenith")
    campaign_id = store.add_campaign(WORKSPACE, "ZNT - Orion")

    report = _run(store)

    assert report.campaigns_linked == 1
    assert store.campaigns[campaign_id]["engagement_id"] == ids["zenith"]


def test_storage_error_downgrades_only_the_failing_group() -> None:
    store, ids = _seeded_store()
    acme_campaign = store.add_campaign(WORKSPACE, "Acme - Roadrunner")
    zenith_campaign = store.add_campaign(WORKSPACE, "Zenith - Orion")
    original = store.link_campaigns

    async def flaky_link(campaign_ids: list[str], engagement_id: str) -> list[str]:
        if engagement_id == ids["zenith"]:
            raise RepositoryUnavailableError("connection reset")
        return await original(campaign_ids, engagement_id)

    store.link_campaigns = flaky_link  # type: ignore[method-assign]

    report = _run(store)

    assert report.campaigns_linked == 1
    assert store.campaigns[acme_campaign]["engagement_id"] == ids["acme"]
    assert store.campaigns[zenith_campaign]["engagement_id"] == store.unassigned_engagement_id
    [failed] = report.ambiguous
    assert failed.code == "storage_error"
    assert "connection reset" in failed.reason


def test_concurrent_relink_is_reported_as_conflict() -> None:
    store, ids = _seeded_store()
    campaign_id = store.add_campaign(WORKSPACE, "Acme - Roadrunner")
    original = store.link_campaigns

    async def racing_link(campaign_ids: list[str], engagement_id: str) -> list[str]:
        store.campaigns[campaign_id]["engagement_id"] = ids["zenith"]
        return await original(campaign_ids, engagement_id)

    store.link_campaigns = racing_link  # type: ignore[method-assign]

    report = _run(store)

    assert report.campaigns_linked == 0
    assert report.linked_details == []
    assert [row.code for row in report.ambiguous] == ["link_conflict"]
    assert store.campaigns[campaign_id]["engagement_id"] == ids["zenith"]


def test_snapshot_importer_runs_before_matching() -> None:
    store, ids = _seeded_store()

    async def importer(workspace_id: str) -> dict[str, dict[str, int]]:
        store.add_campaign(workspace_id, "Acme - Roadrunner", platform="smartlead", external_id="101")
        return {"smartlead": {"fetched": 1, "upserted": 1, "errors": 0}}

    report = _run(store, snapshot_importer=importer)

    assert report.snapshots_imported == {"smartlead": {"fetched": 1, "upserted": 1, "errors": 0}}
    assert report.campaigns_linked == 1
    assert report.linked_details[0].engagement_id == ids["acme"]

"""Link unassigned campaigns to engagements.

One invocation reads the workspace's engagements, its unassigned campaigns and
its alias table once, matches every campaign, then writes one batched link per
target engagement. Campaigns that cannot be linked are always reported with a
reason code; nothing is dropped silently and a failed write for one engagement
does not stop the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from typing import Any

from opentelemetry import trace

from campaign_sync.matching.matcher import Ambiguous, FuzzyMatcher, Matched, NoMatch
from campaign_sync.matching.segments import DEFAULT_PARSER, SegmentParser
from campaign_sync.services.repository import CampaignRecord, RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SnapshotImporter = Callable[[str], Awaitable[dict[str, dict[str, int]]]]


@dataclass(slots=True)
class UnlinkedCampaign:
    campaign_id: str
    name: str
    code: str
    reason: str
    candidates: list[str] = field(default_factory=list)


@dataclass(slots=True)
class LinkedGroup:
    engagement_id: str
    engagement: str
    campaign_ids: list[str] = field(default_factory=list)
    campaigns: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ReconciliationReport:
    workspace_id: str
    dry_run: bool
    linked_details: list[LinkedGroup] = field(default_factory=list)
    ambiguous: list[UnlinkedCampaign] = field(default_factory=list)
    snapshots_imported: dict[str, dict[str, int]] | None = None

    @property
    def campaigns_linked(self) -> int:
        return sum(len(group.campaign_ids) for group in self.linked_details)

    @property
    def campaigns_unlinked(self) -> int:
        return len(self.ambiguous)


async def reconcile_workspace(
    repository: Any,
    workspace_id: str,
    *,
    dry_run: bool = False,
    snapshot_importer: SnapshotImporter | None = None,
    matcher: FuzzyMatcher | None = None,
    parser: SegmentParser | None = None,
) -> ReconciliationReport:
    matcher = matcher or FuzzyMatcher()
    parser = parser or DEFAULT_PARSER
    report = ReconciliationReport(workspace_id=workspace_id, dry_run=dry_run)

    with tracer.start_as_current_span("reconcile.workspace") as span:
        span.set_attribute("workspace.id", workspace_id)
        span.set_attribute("reconcile.dry_run", dry_run)

        if snapshot_importer is not None:
            report.snapshots_imported = await snapshot_importer(workspace_id)

        engagements = await repository.list_engagements(workspace_id)
        campaigns: list[CampaignRecord] = await repository.list_unassigned_campaigns(workspace_id)
        aliases = await repository.get_alias_map(workspace_id)
        logger.info(
            "reconciling workspace_id=%s campaigns=%s engagements=%s aliases=%s dry_run=%s",
            workspace_id,
            len(campaigns),
            len(engagements),
            len(aliases),
            dry_run,
        )

        groups: dict[str, LinkedGroup] = {}
        for campaign in campaigns:
            segments = parser.parse(campaign.name)
            result = matcher.find_match(segments, engagements, aliases=aliases)
            if isinstance(result, Matched):
                group = groups.get(result.engagement_id)
                if group is None:
                    group = LinkedGroup(engagement_id=result.engagement_id, engagement=result.engagement_name)
                    groups[result.engagement_id] = group
                group.campaign_ids.append(campaign.id)
                group.campaigns.append(campaign.name)
            elif isinstance(result, Ambiguous):
                report.ambiguous.append(
                    UnlinkedCampaign(
                        campaign_id=campaign.id,
                        name=campaign.name,
                        code=result.code,
                        reason=result.reason,
                        candidates=list(result.candidate_names),
                    )
                )
            elif isinstance(result, NoMatch):
                report.ambiguous.append(
                    UnlinkedCampaign(campaign_id=campaign.id, name=campaign.name, code=result.code, reason=result.reason)
                )

        if dry_run:
            report.linked_details.extend(groups.values())
        else:
            outcomes = await asyncio.gather(*(_apply_group(repository, group) for group in groups.values()))
            for linked_group, unlinked in outcomes:
                if linked_group is not None:
                    report.linked_details.append(linked_group)
                report.ambiguous.extend(unlinked)

        span.set_attribute("reconcile.linked", report.campaigns_linked)
        span.set_attribute("reconcile.unlinked", report.campaigns_unlinked)
        logger.info(
            "reconcile complete workspace_id=%s linked=%s unlinked=%s dry_run=%s",
            workspace_id,
            report.campaigns_linked,
            report.campaigns_unlinked,
            dry_run,
        )
        return report


async def _apply_group(repository: Any, group: LinkedGroup) -> tuple[LinkedGroup | None, list[UnlinkedCampaign]]:
    try:
        linked_ids = set(await repository.link_campaigns(group.campaign_ids, group.engagement_id))
    except RepositoryError as exc:
        logger.error("failed to link %s campaigns to %s: %s", len(group.campaign_ids), group.engagement, exc)
        return None, [
            UnlinkedCampaign(
                campaign_id=campaign_id,
                name=name,
                code="storage_error",
                reason=f"Failed to link to {group.engagement}: {exc}",
            )
            for campaign_id, name in zip(group.campaign_ids, group.campaigns)
        ]

    applied = LinkedGroup(engagement_id=group.engagement_id, engagement=group.engagement)
    conflicts: list[UnlinkedCampaign] = []
    for campaign_id, name in zip(group.campaign_ids, group.campaigns):
        if campaign_id in linked_ids:
            applied.campaign_ids.append(campaign_id)
            applied.campaigns.append(name)
        else:
            conflicts.append(
                UnlinkedCampaign(
                    campaign_id=campaign_id,
                    name=name,
                    code="link_conflict",
                    reason="campaign was linked to another engagement during reconciliation",
                )
            )
    return (applied if applied.campaign_ids else None), conflicts

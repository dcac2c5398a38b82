from uuid import UUID

from pydantic import BaseModel, Field

from campaign_sync.services.reconciliation import ReconciliationReport


class ReconcileRequest(BaseModel):
    workspace_id: UUID
    dry_run: bool = False
    import_snapshots: bool = False


class UnlinkedCampaignOut(BaseModel):
    campaign_id: str
    name: str
    code: str
    reason: str
    candidates: list[str] = Field(default_factory=list)


class LinkedGroupOut(BaseModel):
    engagement_id: str
    engagement: str
    campaigns: list[str]


class SnapshotImportCounts(BaseModel):
    fetched: int = 0
    upserted: int = 0
    errors: int = 0


class ReconcileOut(BaseModel):
    workspace_id: str
    dry_run: bool
    campaigns_linked: int
    campaigns_unlinked: int
    ambiguous: list[UnlinkedCampaignOut]
    linked_details: list[LinkedGroupOut]
    snapshots_imported: dict[str, SnapshotImportCounts] | None = None

    @classmethod
    def from_report(cls, report: ReconciliationReport) -> "ReconcileOut":
        return cls(
            workspace_id=report.workspace_id,
            dry_run=report.dry_run,
            campaigns_linked=report.campaigns_linked,
            campaigns_unlinked=report.campaigns_unlinked,
            ambiguous=[
                UnlinkedCampaignOut(
                    campaign_id=row.campaign_id,
                    name=row.name,
                    code=row.code,
                    reason=row.reason,
                    candidates=list(row.candidates),
                )
                for row in report.ambiguous
            ],
            linked_details=[
                LinkedGroupOut(engagement_id=group.engagement_id, engagement=group.engagement, campaigns=group.campaigns)
                for group in report.linked_details
            ],
            snapshots_imported=(
                {platform: SnapshotImportCounts(**counts) for platform, counts in report.snapshots_imported.items()}
                if report.snapshots_imported is not None
                else None
            ),
        )

from typing import Literal
from uuid import UUID

from pydantic import BaseModel

from campaign_sync.jobs.recovery import RecoveryReport

RecoveryActionName = Literal["auto", "detect", "resume", "reset"]


class RecoveryRequest(BaseModel):
    action: RecoveryActionName = "auto"
    platform: str | None = None
    workspace_id: UUID | None = None
    force_resume: bool = False


class RecoveryResultOut(BaseModel):
    job_id: str
    platform: str
    workspace_id: str
    action: str
    stuck_duration_minutes: int
    success: bool
    message: str


class RecoveryOut(BaseModel):
    action: RecoveryActionName
    stuck_count: int
    results: list[RecoveryResultOut]

    @classmethod
    def from_report(cls, report: RecoveryReport) -> "RecoveryOut":
        return cls(
            action=report.action.value,
            stuck_count=report.stuck_count,
            results=[
                RecoveryResultOut(
                    job_id=row.job_id,
                    platform=row.platform,
                    workspace_id=row.workspace_id,
                    action=row.action,
                    stuck_duration_minutes=row.stuck_duration_minutes,
                    success=row.success,
                    message=row.message,
                )
                for row in report.results
            ],
        )

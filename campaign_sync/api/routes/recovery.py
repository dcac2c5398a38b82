from fastapi import APIRouter, Depends, HTTPException, status

from campaign_sync.core.config import Settings, get_settings
from campaign_sync.core.security import get_machine_principal
from campaign_sync.jobs.recovery import RecoveryOrchestrator, RecoveryPolicy
from campaign_sync.schemas.recovery import RecoveryOut, RecoveryRequest
from campaign_sync.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from campaign_sync.services.sync_client import get_sync_client

router = APIRouter()


@router.post("", response_model=RecoveryOut)
async def run_sync_recovery(
    payload: RecoveryRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
    sync_client=Depends(get_sync_client),
) -> RecoveryOut:
    required_scope = "sync:read" if payload.action == "detect" else "sync:write"
    try:
        principal.require_scopes({required_scope})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    orchestrator = RecoveryOrchestrator(
        repository,
        sync_client,
        policy=RecoveryPolicy.from_settings(settings),
        lease_owner=settings.recovery_lease_owner,
    )
    try:
        report = await orchestrator.run(
            payload.action,
            platform=payload.platform,
            workspace_id=str(payload.workspace_id) if payload.workspace_id else None,
            force_resume=payload.force_resume,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return RecoveryOut.from_report(report)

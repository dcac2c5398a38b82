from fastapi import APIRouter, Depends, HTTPException, status

from campaign_sync.core.config import Settings, get_settings
from campaign_sync.core.security import get_machine_principal
from campaign_sync.schemas.reconcile import ReconcileOut, ReconcileRequest
from campaign_sync.services.reconciliation import reconcile_workspace
from campaign_sync.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from campaign_sync.services.snapshots import get_nocodb_client, import_campaign_snapshots, snapshot_tables

router = APIRouter()


@router.post("", response_model=ReconcileOut)
async def reconcile(
    payload: ReconcileRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
    nocodb_client=Depends(get_nocodb_client),
) -> ReconcileOut:
    try:
        principal.require_scopes({"reconcile:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    snapshot_importer = None
    if payload.import_snapshots:
        tables = snapshot_tables(settings)
        if nocodb_client is None or not tables:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="snapshot import requested but NocoDB is not configured",
            )

        async def import_snapshots(workspace_id: str) -> dict[str, dict[str, int]]:
            return await import_campaign_snapshots(
                repository,
                nocodb_client,
                workspace_id,
                tables=tables,
                batch_size=settings.snapshot_upsert_batch_size,
            )

        snapshot_importer = import_snapshots

    try:
        report = await reconcile_workspace(
            repository,
            str(payload.workspace_id),
            dry_run=payload.dry_run,
            snapshot_importer=snapshot_importer,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ReconcileOut.from_report(report)

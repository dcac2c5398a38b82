import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, status

from campaign_sync.core.auth import Principal
from campaign_sync.core.config import Settings, get_settings
from campaign_sync.services.repository import RepositoryUnavailableError, get_repository


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    if not x_api_key or not x_module_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"machine auth requires {settings.api_key_header} and X-Module-Id",
        )

    try:
        credentials = await repository.get_machine_credentials(x_module_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    key_hash = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    matched = next((record for record in credentials if hmac.compare_digest(record.key_hash, key_hash)), None)
    if not matched:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    return Principal(
        subject=matched.module_id,
        scopes=set(matched.scopes),
        actor_id=matched.module_db_id,
    )

from __future__ import annotations

from typing import Any

import httpx


class CampaignSyncApiClient:
    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def reconcile(
        self,
        workspace_id: str,
        *,
        dry_run: bool = False,
        import_snapshots: bool = False,
    ) -> dict[str, Any]:
        payload = {
            "workspace_id": workspace_id,
            "dry_run": dry_run,
            "import_snapshots": import_snapshots,
        }
        return await self._post("/reconcile", payload)

    async def recover(
        self,
        *,
        action: str = "auto",
        platform: str | None = None,
        workspace_id: str | None = None,
        force_resume: bool = False,
    ) -> dict[str, Any]:
        payload = {
            "action": action,
            "platform": platform,
            "workspace_id": workspace_id,
            "force_resume": force_resume,
        }
        return await self._post("/sync-recovery", payload)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self._client is not None:
            response = await self._client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
        response.raise_for_status()
        return response.json()

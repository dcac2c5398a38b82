from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
from typing import Any

import httpx

from campaign_sync.core.config import get_settings

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_CHARS = 500


@dataclass(slots=True)
class ContinuationOutcome:
    success: bool
    message: str
    status_code: int | None = None


class SyncContinuationClient:
    """Invokes a platform's ``<platform>-sync`` entry point with the service credential."""

    def __init__(
        self,
        base_url: str,
        service_key: str | None,
        *,
        path_template: str = "/functions/v1/{platform}-sync",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.path_template = path_template
        self.timeout_seconds = timeout_seconds
        self.headers = {"Content-Type": "application/json"}
        if service_key:
            self.headers["Authorization"] = f"Bearer {service_key}"
        self._client = client

    def entry_point_url(self, platform: str) -> str:
        return f"{self.base_url}{self.path_template.format(platform=platform)}"

    async def continue_sync(self, platform: str, payload: dict[str, Any]) -> ContinuationOutcome:
        url = self.entry_point_url(platform)
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=self.headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(url, json=payload, headers=self.headers)
        except httpx.TimeoutException as exc:
            logger.warning("continuation call timed out platform=%s url=%s", platform, url)
            return ContinuationOutcome(success=False, message=f"Error resuming: timeout ({exc.__class__.__name__})")
        except httpx.HTTPError as exc:
            logger.warning("continuation call failed platform=%s url=%s error=%s", platform, url, exc)
            return ContinuationOutcome(success=False, message=f"Error resuming: {exc}")

        if response.is_success:
            return ContinuationOutcome(
                success=True,
                message=f"Successfully resumed {platform} sync",
                status_code=response.status_code,
            )

        body = response.text[:MAX_ERROR_BODY_CHARS]
        return ContinuationOutcome(
            success=False,
            message=f"Failed to resume: {response.status_code} {body}".strip(),
            status_code=response.status_code,
        )


@lru_cache
def get_sync_client() -> SyncContinuationClient:
    settings = get_settings()
    return SyncContinuationClient(
        base_url=settings.sync_functions_base_url,
        service_key=settings.sync_service_key,
        path_template=settings.sync_function_path_template,
        timeout_seconds=settings.sync_timeout_seconds,
    )

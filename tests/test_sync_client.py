from __future__ import annotations

import asyncio
import json

import httpx

from campaign_sync.services.sync_client import ContinuationOutcome, SyncContinuationClient


def _call(handler, payload: dict | None = None, *, service_key: str | None = "service-key") -> ContinuationOutcome:
    async def run() -> ContinuationOutcome:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sync_client = SyncContinuationClient("https://functions.example.com/", service_key, client=client)
            return await sync_client.continue_sync("smartlead", payload or {"workspace_id": "ws-1"})

    return asyncio.run(run())


def test_continue_sync_posts_payload_with_service_credential() -> None:
    seen: dict = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(status_code=200, json={"ok": True}, request=request)

    outcome = _call(handler, {"workspace_id": "ws-1", "is_continuation": True})

    assert outcome.success
    assert outcome.message == "Successfully resumed smartlead sync"
    assert seen["url"] == "https://functions.example.com/functions/v1/smartlead-sync"
    assert seen["auth"] == "Bearer service-key"
    assert seen["body"] == {"workspace_id": "ws-1", "is_continuation": True}


def test_non_2xx_is_a_failed_outcome_with_truncated_body() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=502, text="x" * 2000, request=request)

    outcome = _call(handler)

    assert not outcome.success
    assert outcome.status_code == 502
    assert outcome.message.startswith("Failed to resume: 502 ")
    assert len(outcome.message) <= len("Failed to resume: 502 ") + 500


def test_timeout_is_a_failed_outcome() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    outcome = _call(handler)

    assert not outcome.success
    assert "timeout" in outcome.message


def test_transport_error_is_a_failed_outcome() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = _call(handler)

    assert not outcome.success
    assert "connection refused" in outcome.message


def test_missing_service_key_sends_no_authorization_header() -> None:
    seen: dict = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(status_code=204, request=request)

    assert _call(handler, service_key=None).success
    assert seen["auth"] is None


def test_entry_point_url_uses_path_template() -> None:
    client = SyncContinuationClient("http://localhost:9000", None, path_template="/sync/{platform}")

    assert client.entry_point_url("replyio") == "http://localhost:9000/sync/replyio"

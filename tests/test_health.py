import logging

import pytest
from fastapi.testclient import TestClient

from campaign_sync.main import app


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert float(response.headers["X-Request-Duration-Ms"]) >= 0


def test_request_log_skips_healthz_and_names_calling_module(caplog: pytest.LogCaptureFixture) -> None:
    client = TestClient(app)

    with caplog.at_level(logging.INFO, logger="campaign_sync.main"):
        client.get("/healthz")
        client.post("/reconcile", json={}, headers={"X-Module-Id": "local-scheduler"})

    request_lines = [record.getMessage() for record in caplog.records if record.getMessage().startswith("http request")]
    assert len(request_lines) == 1
    assert "path=/reconcile" in request_lines[0]
    assert "module_id=local-scheduler" in request_lines[0]

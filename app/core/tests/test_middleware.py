"""Tests for request middleware."""

from unittest.mock import MagicMock

import pytest

from app.core import middleware
from app.core.logging import request_id_ctx


@pytest.fixture
def request_logger(monkeypatch):
    """Replace the middleware logger with a mock."""
    logger = MagicMock()
    monkeypatch.setattr(middleware, "logger", logger)
    return logger


def logged(logger: MagicMock, event: str) -> dict:
    """Keyword arguments of the single call logging ``event``."""
    calls = [c for c in logger.info.call_args_list if c.args[0] == event]
    assert len(calls) == 1
    return calls[0].kwargs


async def test_generates_request_id(client):
    """A UUID request ID is generated when the client sends none."""
    response1 = await client.get("/health")
    response2 = await client.get("/health")

    id1 = response1.headers["X-Request-ID"]
    id2 = response2.headers["X-Request-ID"]
    assert len(id1) == 36
    assert id1 != id2


async def test_preserves_provided_request_id(client):
    """A client-provided request ID is echoed back."""
    response = await client.get("/health", headers={"X-Request-ID": "dashboard-refresh-42"})

    assert response.headers["X-Request-ID"] == "dashboard-refresh-42"


async def test_logs_request_lifecycle_with_timing(client, request_logger):
    """Start and completion are logged, the latter with status and duration."""
    response = await client.get("/health", params={"verbose": "1"})

    assert response.status_code == 200
    started = logged(request_logger, "http.request_started")
    assert started == {"method": "GET", "path": "/health", "query": "verbose=1"}

    completed = logged(request_logger, "http.request_completed")
    assert completed["status_code"] == 200
    assert completed["path"] == "/health"
    assert isinstance(completed["duration_ms"], float)
    assert completed["duration_ms"] >= 0


async def test_request_id_scoped_to_request(client, request_logger):
    """The request ID is visible while handling and reset afterwards."""
    seen: list[str | None] = []
    request_logger.info.side_effect = lambda *args, **kwargs: seen.append(request_id_ctx.get())

    await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert seen == ["req-123", "req-123"]
    assert request_id_ctx.get() is None

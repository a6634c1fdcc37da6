import pytest
import structlog

from repeet.logging_config import LoggingConfig, LoggingMiddleware, QUIET_LOGGERS


def test_app_context_includes_review_timezone(monkeypatch):
    monkeypatch.setenv("REPEET_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("ENVIRONMENT", "test")
    config = LoggingConfig()
    config.app_version = "1.2.3"

    event = config.add_app_context(None, "info", {"event": "Problem rated", "backend": "local"})

    assert event == {
        "event": "Problem rated",
        "backend": "local",
        "app_name": "repeet-backend",
        "app_version": "1.2.3",
        "environment": "test",
        "timezone": "Europe/Berlin",
    }


def test_bound_context_is_merged_before_rendering(monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    processors = LoggingConfig().processors()

    assert processors[0] is structlog.contextvars.merge_contextvars
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


def test_file_logging_only_with_a_path(monkeypatch):
    monkeypatch.delenv("LOG_FILE_PATH", raising=False)
    assert LoggingConfig().log_file_path is None

    monkeypatch.setenv("LOG_FILE_PATH", "logs/repeet.log")
    assert LoggingConfig().log_file_path == "logs/repeet.log"
    assert "asyncpg" in QUIET_LOGGERS


@pytest.mark.asyncio
async def test_middleware_starts_each_request_with_fresh_context():
    seen = {}
    sent = []

    async def app(scope, receive, send):
        seen.update(structlog.contextvars.get_contextvars())
        await send({"type": "http.response.start", "status": 204, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    async def receive():
        return {"type": "http.request"}

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/problems/queue",
        "query_string": b"",
        "client": ("127.0.0.1", 50000),
    }
    structlog.contextvars.bind_contextvars(backend="remote", owner_id="previous-user")

    await LoggingMiddleware(app)(scope, receive, send)

    assert "backend" not in seen
    assert "owner_id" not in seen
    assert seen["method"] == "GET"
    assert seen["path"] == "/api/problems/queue"
    assert len(seen["request_id"]) == 36
    assert sent[0]["status"] == 204
    structlog.contextvars.clear_contextvars()

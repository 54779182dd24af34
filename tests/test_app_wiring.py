import logging
from unittest.mock import patch

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from companion import logging_config
from companion import main as main_mod
from companion.errors import CacheUnavailableError
from companion.logging_config import req_id_var
from companion.memory.history_cache import HistoryCache
from companion.memory.keys import ConversationKey
from companion.memory.manager import MemoryManager
from tests.helpers.fakes import FakeRedis, FakeVectorBackend


def _app_with(redis: FakeRedis, backend: FakeVectorBackend):
    manager = MemoryManager(HistoryCache(redis), backend, requested_backend="fake")
    app = main_mod.create_app()

    @app.post("/echo/{user_id}")
    async def echo(user_id: str, text: str, memory: MemoryManager = Depends(main_mod.get_memory)):
        key = ConversationKey("Alice", "gpt-4", user_id)
        await memory.write_to_history(text, key)
        return {"history": await memory.read_latest_history(key)}

    return app, manager


def test_lifespan_initializes_shared_manager():
    redis, backend = FakeRedis(), FakeVectorBackend()
    app, manager = _app_with(redis, backend)

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with TestClient(app) as client:
            assert app.state.memory is manager
            assert manager.ready
            client.post("/echo/u1", params={"text": "Hello"})
            resp = client.post("/echo/u1", params={"text": "Hi there"})
            assert resp.json() == {"history": "Hello\nHi there"}

    assert backend.init_calls == 1
    assert backend.closed and redis.closed


def test_degraded_backend_does_not_block_startup():
    redis = FakeRedis()
    backend = FakeVectorBackend(init_error=ConnectionRefusedError("pg down"))
    app, manager = _app_with(redis, backend)

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with TestClient(app) as client:
            assert manager.degraded
            resp = client.post("/echo/u1", params={"text": "Hello"})
            assert resp.status_code == 200


def test_unreachable_history_store_aborts_startup():
    app, manager = _app_with(FakeRedis(fail=True), FakeVectorBackend())

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with pytest.raises(CacheUnavailableError):
            with TestClient(app):
                pass


def test_history_outage_maps_to_503():
    redis = FakeRedis()
    app, manager = _app_with(redis, FakeVectorBackend())

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with TestClient(app) as client:
            redis.fail = True
            resp = client.post("/echo/u1", params={"text": "Hello"}, headers={"x-request-id": "r-1"})

    assert resp.status_code == 503
    body = resp.json()
    assert body["code"] == "memory_unavailable"
    assert body["meta"]["request_id"] == "r-1"


def test_strict_init_failure_aborts_startup_and_closes_stores():
    redis = FakeRedis()
    backend = FakeVectorBackend(init_error=RuntimeError("pg down"))
    manager = MemoryManager(HistoryCache(redis), backend, strict=True)
    app = main_mod.create_app()

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with pytest.raises(RuntimeError):
            with TestClient(app):
                pass

    assert redis.closed and backend.closed


def test_request_id_is_propagated_to_context_and_response():
    app, manager = _app_with(FakeRedis(), FakeVectorBackend())

    @app.get("/whoami-request")
    async def whoami_request():
        return {"req_id": req_id_var.get()}

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with TestClient(app) as client:
            resp = client.get("/whoami-request", headers={"X-Request-ID": "abc-123"})
            generated = client.get("/whoami-request")

    assert resp.json() == {"req_id": "abc-123"}
    assert resp.headers["X-Request-ID"] == "abc-123"
    assert generated.json()["req_id"] not in ("", "-")
    assert generated.headers["X-Request-ID"] == generated.json()["req_id"]


def test_memory_health_reports_status():
    redis = FakeRedis()
    app, manager = _app_with(redis, FakeVectorBackend())

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with TestClient(app) as client:
            ok = client.get("/healthz/memory").json()
            redis.fail = True
            down = client.get("/healthz/memory").json()

    assert ok["state"] == "ready"
    assert ok["degraded"] is False
    assert ok["history_ok"] is True
    assert down["history_ok"] is False


def test_logs_route_returns_buffered_errors():
    app, manager = _app_with(FakeRedis(), FakeVectorBackend())
    logging_config.clear_errors()

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with TestClient(app) as client:
            logging.getLogger("companion.memory").error("history.append failed")
            body = client.get("/logs", params={"limit": 5}).json()

    assert [e["msg"] for e in body["logs"]] == ["history.append failed"]
    logging_config.clear_errors()


def test_startup_logs_masked_config(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    app, manager = _app_with(FakeRedis(), FakeVectorBackend())

    with patch.object(main_mod, "build_memory_manager", return_value=manager):
        with patch.object(main_mod, "logger") as log:
            with TestClient(app):
                pass

    config_calls = [c for c in log.info.call_args_list if c.args[0] == "memory.config"]
    assert len(config_calls) == 1
    meta = config_calls[0].kwargs["extra"]["meta"]
    assert meta["embed"]["openai_api_key"] == "***"

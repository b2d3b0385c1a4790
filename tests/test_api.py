import json

from fastapi.testclient import TestClient

from src.chatrelay.api.deps import build_services
from src.chatrelay.api.main import create_app
from src.chatrelay.config import RateLimitConfig
from src.chatrelay.services.generation import StreamChunk
from tests.fakes import chunks, parse_sse, register_and_login


def test_health_and_root(client):
    for prefix in ("", "/api"):
        r = client.get(f"{prefix}/health")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert body["components"]["store"] == "memory"
    assert client.get("/").json()["name"] == "ChatRelay API"


def test_register_login_me(client):
    headers, data = register_and_login(client, "me@example.com")
    assert data["user"]["email"] == "me@example.com"

    r = client.get("/me", headers=headers)
    assert r.status_code == 200
    assert r.json() == data["user"]

    dup = client.post("/auth/register", json={"email": "me@example.com", "password": "secret123"})
    assert dup.status_code == 409
    assert "error" in dup.json()


def test_auth_errors_use_error_body(client):
    short = client.post("/auth/register", json={"email": "x@example.com", "password": "123"})
    assert short.status_code == 400
    assert "error" in short.json()

    bad = client.post("/auth/login", json={"email": "nobody@example.com", "password": "whatever"})
    assert bad.status_code == 401
    assert bad.json() == {"error": "Invalid email or password"}

    assert client.get("/chat/getall").status_code == 401
    r = client.get("/chat/getall", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401
    assert r.json() == {"error": "Invalid token"}


def test_chat_create_list_delete(client):
    headers, _ = register_and_login(client, "chats@example.com")

    created = client.post("/chat/create", headers=headers)
    assert created.status_code == 201
    chat_id = created.json()["chatId"]
    assert created.json()["message"] == "chat created"

    listed = client.get("/api/chat/getall", headers=headers).json()["chats"]
    assert [c["title"] for c in listed] == ["new chat", "Chat"]
    assert listed[0]["chat_id"] == chat_id

    r = client.post("/chat/delete", json={"chat_id": chat_id}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"message": "chat deleted"}
    again = client.post("/chat/delete", json={"chat_id": chat_id}, headers=headers)
    assert again.status_code == 404
    assert again.json() == {"error": "Chat not found"}

    assert client.post("/chat/delete", json={}, headers=headers).status_code == 400


def test_message_streams_sse_and_persists(client, backend):
    backend.chunks = chunks("Hel", "lo")
    headers, _ = register_and_login(client, "sse@example.com")
    chat_id = client.post("/chat/create", headers=headers).json()["chatId"]

    r = client.post("/chat/message", json={"chat_id": chat_id, "prompt": "hi"}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"
    frames = parse_sse(r.text)
    assert [json.loads(d) for e, d in frames if e is None] == [{"delta": "Hel"}, {"delta": "lo"}]
    assert frames[-1] == ("done", '"end"')

    chats = client.get("/chat/getall", headers=headers).json()["chats"]
    chat = next(c for c in chats if c["chat_id"] == chat_id)
    assert [(m["role"], m["content"]) for m in chat["messages"]] == [("user", "hi"), ("model", "Hello")]


def test_message_upstream_error_is_in_stream(client, backend):
    backend.chunks = chunks("par") + [StreamChunk(error="AI API key not set")]
    headers, _ = register_and_login(client, "err@example.com")
    chat_id = client.post("/chat/create", headers=headers).json()["chatId"]

    r = client.post("/chat/message", json={"chat_id": chat_id, "prompt": "hi"}, headers=headers)
    assert r.status_code == 200
    payloads = [json.loads(d) for e, d in parse_sse(r.text) if e is None]
    assert payloads[-1] == {"error": "AI API key not set"}


def test_message_rejections_are_json(client):
    owner, _ = register_and_login(client, "owner@example.com")
    other, _ = register_and_login(client, "other@example.com")
    chat_id = client.post("/chat/create", headers=owner).json()["chatId"]

    foreign = client.post("/chat/message", json={"chat_id": chat_id, "prompt": "hi"}, headers=other)
    missing = client.post("/chat/message", json={"chat_id": "nope", "prompt": "hi"}, headers=other)
    assert foreign.status_code == missing.status_code == 404
    assert foreign.json() == missing.json()

    blank = client.post("/chat/message", json={"chat_id": chat_id, "prompt": ""}, headers=owner)
    assert blank.status_code == 400
    assert blank.json() == {"error": "ChatId and Prompt are required"}


def test_message_rate_limit(app_config, backend, searcher):
    from dataclasses import replace

    cfg = replace(app_config, rate_limit=RateLimitConfig(limit=1, window_seconds=60))
    services = build_services(cfg, backend=backend, searcher=searcher)
    with TestClient(create_app(services=services)) as c:
        headers, _ = register_and_login(c, "limited@example.com")
        chat_id = c.post("/chat/create", headers=headers).json()["chatId"]
        body = {"chat_id": chat_id, "prompt": "hi"}
        assert c.post("/chat/message", json=body, headers=headers).status_code == 200
        r = c.post("/chat/message", json=body, headers=headers)
        assert r.status_code == 429
        assert int(r.headers["retry-after"]) >= 1


def test_metrics_endpoint_exposes_chatrelay_series(client):
    assert client.get("/health").status_code == 200
    body = client.get("/metrics").text
    assert "# TYPE chatrelay_request_latency_seconds histogram" in body
    assert "chatrelay_turns_total" in body
    assert "chatrelay_stream_chunks_total" in body


def test_register_rejects_password_over_bcrypt_byte_limit(client):
    r = client.post("/auth/register", json={"email": "mb@example.com", "password": "é" * 72})
    assert r.status_code == 400
    assert "72 bytes" in r.json()["error"]

    ok = client.post("/auth/register", json={"email": "mb@example.com", "password": "é" * 36})
    assert ok.status_code == 201


def test_run_serves_app_with_uvicorn(monkeypatch):
    import uvicorn

    from src.chatrelay.api import main

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setenv("CHATRELAY_PORT", "9001")
    monkeypatch.delenv("CHATRELAY_HOST", raising=False)
    main.run()
    assert calls == [("src.chatrelay.api.main:app", {"host": "0.0.0.0", "port": 9001})]


def test_module_loggers_sit_under_chatrelay_logger():
    from src.chatrelay.infrastructure import chat_store_mongo
    from src.chatrelay.security import auth
    from src.chatrelay.services import generation, retrieval_gate, turn_orchestrator

    for log in (
        chat_store_mongo.logger,
        auth.logger,
        generation.LOG,
        retrieval_gate.logger,
        turn_orchestrator.logger,
        turn_orchestrator.TURN_LOG,
    ):
        assert log.name.startswith("chatrelay.")
        assert log.parent.name == "chatrelay"

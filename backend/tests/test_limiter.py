from unittest.mock import patch

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from starlette.requests import Request

from rib.limiter import RateLimited, client_ip, require_admission
from rib.main import rate_limited_handler
from rib.services.rate_limiter import RateLimitRule, Scope, SlidingWindowLimiter


def make_request(headers=None, client=("10.0.0.9", 41000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_client_ip_prefers_forwarded_for_first_hop():
    request = make_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1, 10.0.0.2"})
    assert client_ip(request) == "203.0.113.5"


def test_client_ip_from_forwarded_header():
    request = make_request({"Forwarded": 'for="198.51.100.7:4711";proto=https;by=203.0.113.43'})
    assert client_ip(request) == "198.51.100.7"


def test_client_ip_from_forwarded_ipv6():
    request = make_request({"Forwarded": 'for="[2001:db8::1]:4711"'})
    assert client_ip(request) == "2001:db8::1"


def test_client_ip_falls_back_to_peer():
    assert client_ip(make_request()) == "10.0.0.9"


def test_client_ip_unknown():
    assert client_ip(make_request(client=None)) == "unknown"


def build_app():
    app = FastAPI()
    app.add_exception_handler(RateLimited, rate_limited_handler)

    @app.post("/threads", dependencies=[Depends(require_admission(Scope.CREATE_THREAD))])
    async def create_thread():
        return {"ok": True}

    @app.post("/replies", dependencies=[Depends(require_admission(Scope.CREATE_REPLY))])
    async def create_reply():
        return {"ok": True}

    return TestClient(app)


def test_thread_scope_denies_second_thread():
    rules = {scope: RateLimitRule(10, 60.0) for scope in Scope}
    rules[Scope.CREATE_THREAD] = RateLimitRule(1, 300.0)
    client = build_app()

    with patch("rib.limiter.rate_limiter", SlidingWindowLimiter(rules)):
        first = client.post("/threads")
        second = client.post("/threads")
        reply = client.post("/replies")

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.headers["retry-after"] == "300"
    assert second.json() == {"detail": "rate limited"}
    assert reply.status_code == 200


def test_disabled_limiter_never_denies():
    rules = {scope: RateLimitRule(1, 300.0) for scope in Scope}
    client = build_app()

    with patch("rib.limiter.rate_limiter", SlidingWindowLimiter(rules, enabled=False)):
        statuses = {client.post("/threads").status_code for _ in range(20)}

    assert statuses == {200}


def decisions(scope, decision):
    labels = {"scope": scope.value, "decision": decision}
    return REGISTRY.get_sample_value("rate_limit_decisions_total", labels) or 0.0


def test_decisions_are_counted():
    rules = {scope: RateLimitRule(1, 300.0) for scope in Scope}
    client = build_app()
    allowed_before = decisions(Scope.CREATE_THREAD, "allowed")
    denied_before = decisions(Scope.CREATE_THREAD, "denied")

    with patch("rib.limiter.rate_limiter", SlidingWindowLimiter(rules)):
        client.post("/threads")
        client.post("/threads")
        client.post("/threads")

    assert decisions(Scope.CREATE_THREAD, "allowed") == allowed_before + 1
    assert decisions(Scope.CREATE_THREAD, "denied") == denied_before + 2

"""HTTP tests for admission, introspection and management routes."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from quota_gate.core.app_factory import create_app
from quota_gate.core.clock import ManualClock
from quota_gate.core.config import RateLimitSettings
from quota_gate.core.errors import StoreUnavailableError
from quota_gate.core.rate_limit import build_rate_limiter, build_window_store, set_rate_limiter
from quota_gate.services.rate_limiter import RateLimiter

API_KEY = {"X-API-Key": "test-api-key-123"}


@pytest.fixture
def client(limiter: RateLimiter) -> TestClient:
    return TestClient(create_app(), raise_server_exceptions=False)


def _from(address: str) -> dict[str, str]:
    return {"X-Forwarded-For": address}


def _unavailable_store() -> Mock:
    outage = StoreUnavailableError(code="store_unavailable", message="Rate limit store is unavailable")
    store = Mock()
    store.backend_name = "redis"
    store.increment_and_read.side_effect = outage
    store.peek.side_effect = outage
    store.ping.return_value = False
    return store


class TestHealth:
    def test_reports_backend(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "backend": "memory"}

    def test_degraded_when_store_does_not_answer(self, clock: ManualClock) -> None:
        set_rate_limiter(RateLimiter(_unavailable_store(), clock=clock))
        client = TestClient(create_app(), raise_server_exceptions=False)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "degraded", "backend": "redis"}


class TestAdmission:
    def test_admits_until_limit_then_429(self, client: TestClient) -> None:
        statuses = [
            client.post("/v1/admission/authentication", headers=_from("203.0.113.7")).status_code
            for _ in range(6)
        ]

        assert statuses == [200] * 5 + [429]

    def test_admitted_body(self, client: TestClient, clock: ManualClock) -> None:
        response = client.post("/v1/admission/authentication", headers=_from("203.0.113.7"))

        body = response.json()
        assert body["admitted"] is True
        assert body["policy"] == "authentication"
        assert body["remaining"] == 4
        reset = datetime.fromisoformat(body["reset"].replace("Z", "+00:00"))
        assert reset == datetime.fromtimestamp(clock() + 15 * 60, tz=timezone.utc)

    def test_rejection_body_is_the_same_for_every_policy(self, client: TestClient) -> None:
        for _ in range(5):
            client.post("/v1/admission/authentication", headers=_from("203.0.113.7"))
        for _ in range(10):
            client.post("/v1/admission/public-submission", headers=_from("203.0.113.7"))

        auth = client.post("/v1/admission/authentication", headers=_from("203.0.113.7"))
        submission = client.post("/v1/admission/public-submission", headers=_from("203.0.113.7"))

        assert auth.status_code == submission.status_code == 429
        assert auth.json() == submission.json() == {"error": "Too Many Requests"}

    def test_forwarded_address_takes_precedence_over_peer(self, client: TestClient) -> None:
        for _ in range(5):
            client.post("/v1/admission/authentication", headers=_from("203.0.113.7, 10.0.0.1"))

        blocked = client.post("/v1/admission/authentication", headers=_from("203.0.113.7"))
        other = client.post("/v1/admission/authentication", headers=_from("198.51.100.2"))

        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_unknown_policy_uses_default(self, client: TestClient) -> None:
        response = client.post("/v1/admission/not-a-policy", headers=_from("203.0.113.7"))

        assert response.status_code == 200
        assert response.json()["policy"] == "default"
        assert response.json()["remaining"] == 99

    def test_store_outage_fails_closed_for_authentication(self, clock: ManualClock) -> None:
        set_rate_limiter(RateLimiter(_unavailable_store(), clock=clock))
        client = TestClient(create_app(), raise_server_exceptions=False)

        assert client.post("/v1/admission/authentication").status_code == 429

    def test_store_outage_fails_open_for_api(self, clock: ManualClock) -> None:
        set_rate_limiter(RateLimiter(_unavailable_store(), clock=clock))
        client = TestClient(create_app(), raise_server_exceptions=False)

        response = client.post("/v1/admission/api", headers=_from("203.0.113.7"))

        assert response.status_code == 200
        body = response.json()
        assert body["admitted"] is True
        assert body["policy"] == "api"
        assert body["remaining"] == 200
        reset = datetime.fromisoformat(body["reset"].replace("Z", "+00:00"))
        assert reset == datetime.fromtimestamp(clock() + 15 * 60, tz=timezone.utc)

    def test_limiter_failure_returns_500(self, clock: ManualClock) -> None:
        store = Mock()
        store.backend_name = "memory"
        store.increment_and_read.side_effect = RuntimeError("corrupted")
        set_rate_limiter(RateLimiter(store, clock=clock))
        client = TestClient(create_app(), raise_server_exceptions=False)

        response = client.post("/v1/admission/api")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}


class TestIntrospection:
    def test_requires_api_key(self, client: TestClient) -> None:
        assert client.get("/v1/rate-limits/policies").status_code == 403
        assert client.get("/v1/rate-limits/policies", headers={"X-API-Key": "nope"}).status_code == 403

    def test_lists_policies(self, client: TestClient) -> None:
        response = client.get("/v1/rate-limits/policies", headers=API_KEY)

        assert response.status_code == 200
        policies = {p["name"]: p for p in response.json()}
        assert policies["authentication"]["limit"] == 5
        assert policies["authentication"]["failure_mode"] == "closed"
        assert policies["public-submission"]["description"] == "10 requests per 60 minutes"
        assert "default" in policies

    def test_identity_info_does_not_consume(self, client: TestClient) -> None:
        for _ in range(10):
            client.post("/v1/admission/public-submission", headers=_from("198.51.100.2"))

        url = "/v1/rate-limits/public-submission/identities/198.51.100.2"
        first = client.get(url, headers=API_KEY).json()
        second = client.get(url, headers=API_KEY).json()

        assert first == second
        assert first["remaining"] == 0
        assert first["limit"] == 10

    def test_identity_info_without_history(self, client: TestClient) -> None:
        response = client.get("/v1/rate-limits/authentication/identities/192.0.2.1", headers=API_KEY)

        assert response.status_code == 200
        assert response.json()["remaining"] == 5

    def test_store_outage_is_503(self, clock: ManualClock) -> None:
        store = Mock()
        store.backend_name = "redis"
        store.peek.side_effect = StoreUnavailableError(
            code="store_unavailable", message="Rate limit store is unavailable"
        )
        set_rate_limiter(RateLimiter(store, clock=clock))
        client = TestClient(create_app(), raise_server_exceptions=False)

        response = client.get("/v1/rate-limits/api/identities/192.0.2.1", headers=API_KEY)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "store_unavailable"


class TestManage:
    def test_allowlist_exempts_administrative(self, client: TestClient) -> None:
        response = client.post(
            "/v1/rate-limits/manage",
            json={"action": "allowlist", "identity": "203.0.113.7"},
            headers=API_KEY,
        )
        assert response.json() == {"action": "allowlist", "applied": True}

        statuses = {
            client.post("/v1/admission/administrative", headers=_from("203.0.113.7")).status_code
            for _ in range(105)
        }

        assert statuses == {200}

    def test_manual_ban_denies_when_bans_enabled(self, client: TestClient, limiter: RateLimiter) -> None:
        limiter.bans_enabled = True

        client.post(
            "/v1/rate-limits/manage",
            json={"action": "ban", "identity": "203.0.113.7", "duration_seconds": 60},
            headers=API_KEY,
        )
        banned = client.post("/v1/admission/api", headers=_from("203.0.113.7"))

        client.post(
            "/v1/rate-limits/manage",
            json={"action": "unban", "identity": "203.0.113.7"},
            headers=API_KEY,
        )
        unbanned = client.post("/v1/admission/api", headers=_from("203.0.113.7"))

        assert banned.status_code == 429
        assert banned.json() == {"error": "Too Many Requests"}
        assert unbanned.status_code == 200

    @pytest.mark.parametrize(
        "payload",
        [
            {"action": "promote", "identity": "203.0.113.7"},
            {"action": "ban", "identity": ""},
            {"action": "ban", "identity": "203.0.113.7", "duration_seconds": -1},
        ],
    )
    def test_invalid_payload_is_422(self, client: TestClient, payload: dict) -> None:
        response = client.post("/v1/rate-limits/manage", json=payload, headers=API_KEY)

        assert response.status_code == 422

    def test_blank_identity_is_400(self, client: TestClient) -> None:
        response = client.post(
            "/v1/rate-limits/manage",
            json={"action": "allowlist", "identity": "   "},
            headers=API_KEY,
        )

        assert response.status_code == 400

    def test_requires_api_key(self, client: TestClient) -> None:
        response = client.post("/v1/rate-limits/manage", json={"action": "ban", "identity": "x"})

        assert response.status_code == 403


class TestWiring:
    def test_build_from_settings_applies_overrides(self) -> None:
        cfg = RateLimitSettings(
            policy_overrides={"authentication": {"limit": 3}},
            allowlist="203.0.113.7, 198.51.100.2",
            bans_enabled=True,
        )

        limiter = build_rate_limiter(cfg)

        assert limiter.registry.resolve("authentication").limit == 3
        assert "198.51.100.2" in limiter.allowlist
        assert limiter.bans_enabled is True
        assert limiter.store.backend_name == "memory"

    def test_policy_overrides_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RATE_LIMIT_POLICY_OVERRIDES", '{"default": {"limit": 7}}')

        limiter = build_rate_limiter(RateLimitSettings())

        assert limiter.registry.resolve("default").limit == 7

    def test_redis_backend_selected(self) -> None:
        store = build_window_store(RateLimitSettings(backend="redis", key_prefix="qg-test:"))

        assert store.backend_name == "redis"

    def test_openapi_marks_only_operational_routes(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert schema["paths"]["/v1/rate-limits/policies"]["get"]["security"] == [{"ApiKeyAuth": []}]
        assert "security" not in schema["paths"]["/v1/admission/{policy}"]["post"]
        assert "ApiKeyAuth" in schema["components"]["securitySchemes"]

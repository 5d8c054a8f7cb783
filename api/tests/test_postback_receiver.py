from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings, get_settings
from app.main import app
from app.services.relay import PostbackForwarder, get_forwarder

DOWNSTREAM_URL = "https://project.functions.example/v1/postback"

MISSING_CLICK_ID_BODY = {"error": "Missing required parameter: click_id", "success": False}


@pytest.fixture
def api_client() -> Iterator[TestClient]:
    app.dependency_overrides[get_settings] = lambda: Settings(downstream_url=None)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_settings(**overrides: Any) -> Settings:
    settings = Settings(**overrides)
    app.dependency_overrides[get_settings] = lambda: settings
    return settings


def _use_downstream(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> PostbackForwarder:
    forwarder = PostbackForwarder(DOWNSTREAM_URL, transport=httpx.MockTransport(handler), **kwargs)
    app.dependency_overrides[get_forwarder] = lambda: forwarder
    return forwarder


def test_empty_query_is_health_check(api_client: TestClient) -> None:
    response = api_client.get("/api/postback")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "message": "Postback service is running correctly",
        "success": True,
    }


def test_missing_click_id_is_rejected(api_client: TestClient) -> None:
    response = api_client.get("/api/postback", params={"goal": "sale", "payout": "25"})
    assert response.status_code == 400
    assert response.json() == MISSING_CLICK_ID_BODY


def test_empty_click_id_is_rejected(api_client: TestClient) -> None:
    response = api_client.get("/api/postback?click_id=")
    assert response.status_code == 400
    assert response.json() == MISSING_CLICK_ID_BODY


def test_missing_click_id_never_reaches_downstream(api_client: TestClient) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"converted": True})

    _use_downstream(handler)
    response = api_client.get("/api/postback", params={"goal": "lead"})
    assert response.status_code == 400
    assert calls == []


def test_local_ack_without_downstream_defaults_goal(api_client: TestClient) -> None:
    response = api_client.get("/api/postback", params={"click_id": "X"})
    assert response.status_code == 200
    assert response.headers["x-postback-relay"] == "fallback"
    assert response.json() == {
        "success": True,
        "message": "Conversion recorded for click_id X",
        "clickId": "X",
        "goal": "conversion",
    }


def test_local_ack_echoes_goal_and_omits_payout(api_client: TestClient) -> None:
    response = api_client.get("/api/postback?click_id=X&goal=sale&payout=25")
    assert response.status_code == 200
    body = response.json()
    assert body["goal"] == "sale"
    assert "payout" not in body


def test_type_parameter_is_used_as_goal(api_client: TestClient) -> None:
    response = api_client.get("/api/postback?click_id=X&type=lead&payout=5")
    assert response.json()["goal"] == "lead"


def test_local_ack_can_include_payout(api_client: TestClient) -> None:
    _use_settings(downstream_url=None, include_payout_in_ack=True)
    response = api_client.get("/api/postback?click_id=X&goal=sale&payout=25")
    assert response.json()["payout"] == "25"


def test_parameter_aliases_are_opt_in(api_client: TestClient) -> None:
    response = api_client.get("/api/postback?clickId=abc&event=lead&amount=5")
    assert response.status_code == 400

    _use_settings(downstream_url=None, accept_parameter_aliases=True)
    response = api_client.get("/api/postback?clickId=abc&event=lead&amount=5")
    assert response.status_code == 200
    assert response.json()["clickId"] == "abc"
    assert response.json()["goal"] == "lead"


def test_downstream_reply_is_relayed_verbatim(api_client: TestClient) -> None:
    captured: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["content_type"] = request.headers.get("content-type")
        return httpx.Response(200, json={"converted": True})

    _use_downstream(handler)
    response = api_client.get("/api/postback?click_id=X&goal=sale&payout=25&sub1=aff-7")

    assert response.status_code == 200
    assert response.json() == {"converted": True}
    assert response.headers["x-postback-relay"] == "relayed"
    assert captured["url"] == f"{DOWNSTREAM_URL}?click_id=X&goal=sale&payout=25&sub1=aff-7"
    assert captured["content_type"] == "application/json"


def test_downstream_status_code_is_relayed(api_client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "Click not found"})

    _use_downstream(handler)
    response = api_client.get("/api/postback", params={"click_id": "unknown-1"})
    assert response.status_code == 404
    assert response.json() == {"error": "Click not found"}


def test_downstream_network_failure_falls_back_to_local_ack(api_client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _use_downstream(handler)
    response = api_client.get("/api/postback", params={"click_id": "X"})

    assert response.status_code == 200
    assert response.headers["x-postback-relay"] == "fallback"
    assert response.json() == {
        "success": True,
        "message": "Conversion recorded for click_id X",
        "clickId": "X",
        "goal": "conversion",
    }


def test_downstream_non_json_body_falls_back_to_local_ack(api_client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    _use_downstream(handler)
    response = api_client.get("/api/postback", params={"click_id": "X", "goal": "sale"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["goal"] == "sale"


def test_same_postback_twice_yields_two_independent_acks(api_client: TestClient) -> None:
    first = api_client.get("/api/postback", params={"click_id": "X", "goal": "sale"})
    second = api_client.get("/api/postback", params={"click_id": "X", "goal": "sale"})
    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()


def test_unexpected_error_returns_generic_500(api_client: TestClient) -> None:
    class ExplodingForwarder:
        downstream_url = DOWNSTREAM_URL

        async def forward(self, event: Any) -> Any:
            raise RuntimeError("connection pool corrupted")

    app.dependency_overrides[get_forwarder] = lambda: ExplodingForwarder()
    response = api_client.get("/api/postback", params={"click_id": "X"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal server error"
    assert body["success"] is False
    assert "connection pool corrupted" not in body["message"]


def test_unexpected_error_details_can_be_exposed(api_client: TestClient) -> None:
    class ExplodingForwarder:
        downstream_url = DOWNSTREAM_URL

        async def forward(self, event: Any) -> Any:
            raise RuntimeError("connection pool corrupted")

    _use_settings(downstream_url=DOWNSTREAM_URL, expose_error_details=True)
    app.dependency_overrides[get_forwarder] = lambda: ExplodingForwarder()
    response = api_client.get("/api/postback", params={"click_id": "X"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "Internal server error",
        "success": False,
        "message": "connection pool corrupted",
    }


def test_postback_templates_use_request_origin(api_client: TestClient) -> None:
    response = api_client.get("/api/postback/templates", params={"type": "lead"})
    assert response.status_code == 200
    body = response.json()
    assert body["base_url"] == "http://testserver/api/postback"
    assert body["template"] == "http://testserver/api/postback?click_id={click_id}&type=lead"
    assert body["examples"]["sale"] == "http://testserver/api/postback?click_id=abc123&type=sale&payout=25"


def test_postback_templates_use_configured_base_url(api_client: TestClient) -> None:
    _use_settings(downstream_url=None, postback_base_url="https://pb.example.com/api/postback")
    response = api_client.get("/api/postback/templates", params={"type": "sale", "include_payout": "true"})
    assert response.json()["template"] == (
        "https://pb.example.com/api/postback?click_id={click_id}&type=sale&payout={payout}"
    )


def test_postback_templates_reject_unknown_type(api_client: TestClient) -> None:
    response = api_client.get("/api/postback/templates", params={"type": "refund"})
    assert response.status_code == 422


def test_downstream_non_finite_json_falls_back_to_local_ack(api_client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=b'{"payout": NaN, "revenue": [1, Infinity]}',
            headers={"content-type": "application/json"},
        )

    _use_downstream(handler)
    response = api_client.get("/api/postback", params={"click_id": "X"})

    assert response.status_code == 200
    assert response.headers["x-postback-relay"] == "fallback"
    assert response.json() == {
        "success": True,
        "message": "Conversion recorded for click_id X",
        "clickId": "X",
        "goal": "conversion",
    }


def test_malformed_downstream_url_falls_back_to_local_ack(api_client: TestClient) -> None:
    forwarder = PostbackForwarder("http://[::1", transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    app.dependency_overrides[get_forwarder] = lambda: forwarder
    response = api_client.get("/api/postback", params={"click_id": "X"})

    assert response.status_code == 200
    assert response.json()["clickId"] == "X"


def test_processing_log_carries_parsed_payout(api_client: TestClient, caplog) -> None:
    with caplog.at_level("INFO", logger="app.api.routes.postback"):
        api_client.get("/api/postback", params={"click_id": "X", "payout": "25.50"})

    assert "payout=25.50 payout_value=25.5" in caplog.text

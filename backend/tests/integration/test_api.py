# backend/tests/integration/test_api.py
import json
from unittest.mock import AsyncMock

from botrix.config import strings
from botrix.config.settings import settings
from botrix.models.flow import Action
from botrix.services.security_service import webhook_security_service
from conftest import edge, make_graph, make_stored_flow, node

API_PREFIX = f"/api/{settings.api_version}"
AUTH = {"X-API-KEY": "test-api-key"}


def _valid_graph():
    return make_graph(
        [node("start", content="Hello"), node("bye", content="Bye {{name}}")],
        [edge("start", "bye")],
    )


def _signed(payload):
    body = json.dumps(payload)
    return body, webhook_security_service.create_secure_headers(body)


# --- Public ---

def test_root_and_health(test_client):
    assert test_client.get("/").json()["status"] == "operational"
    assert test_client.get("/health").json()["status"] == "healthy"


def test_readiness_without_database_is_503(test_client):
    assert test_client.get("/health/ready").status_code == 503


def test_metrics_requires_api_key(test_client):
    assert test_client.get("/metrics").status_code == 403
    response = test_client.get("/metrics", headers=AUTH)
    assert response.status_code == 200
    assert "flow_turns_total" in response.text


# --- Flow management ---

def test_flow_routes_require_api_key(test_client):
    response = test_client.get(f"{API_PREFIX}/bots/bot-1/flow")
    assert response.status_code == 403


def test_get_flow_not_found(test_client, mocker):
    mocker.patch("botrix.routes.flows.flow_service.get_flow", new_callable=AsyncMock, return_value=None)
    response = test_client.get(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH)
    assert response.status_code == 404


def test_get_flow_returns_camel_case_document(test_client, mocker):
    stored = make_stored_flow(_valid_graph(), version=2, is_active=True)
    mocker.patch("botrix.routes.flows.flow_service.get_flow", new_callable=AsyncMock, return_value=stored)

    response = test_client.get(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH)

    assert response.status_code == 200
    flow = response.json()["data"]["flow"]
    assert flow["botId"] == "bot-1"
    assert flow["isActive"] is True
    assert flow["version"] == 2
    assert [n["id"] for n in flow["nodes"]] == ["start", "bye"]
    assert (flow["connections"][0]["source"], flow["connections"][0]["target"]) == ("start", "bye")


def test_create_flow_with_default_skeleton(test_client, mocker):
    mocker.patch("botrix.routes.flows.flow_service.get_flow", new_callable=AsyncMock, return_value=None)
    stored = make_stored_flow(make_graph([node("start", content="Hi")]))
    create = mocker.patch("botrix.routes.flows.flow_service.create_flow", new_callable=AsyncMock, return_value=stored)

    response = test_client.post(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH)

    assert response.status_code == 201
    create.assert_awaited_once_with("bot-1", nodes=None, connections=None, variables=None)


def test_create_flow_conflicts_with_existing(test_client, mocker):
    stored = make_stored_flow(_valid_graph())
    mocker.patch("botrix.routes.flows.flow_service.get_flow", new_callable=AsyncMock, return_value=stored)
    response = test_client.post(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH, json={})
    assert response.status_code == 409


def test_update_flow_saves_new_version(test_client, mocker):
    mocker.patch(
        "botrix.routes.flows.flow_service.get_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(_valid_graph(), version=2)
    )
    saved = make_stored_flow(_valid_graph(), version=3)
    update = mocker.patch("botrix.routes.flows.flow_service.update_flow", new_callable=AsyncMock, return_value=saved)

    body = {"nodes": [node("start", content="Hello"), node("bye", content="Bye")], "connections": [edge("start", "bye")]}
    response = test_client.put(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH, json=body)

    assert response.status_code == 200
    assert response.json()["message"] == "Flow saved as version 3"
    kwargs = update.await_args.kwargs
    assert [n.id for n in kwargs["nodes"]] == ["start", "bye"]
    assert kwargs["is_active"] is None


def test_update_flow_not_found(test_client, mocker):
    mocker.patch("botrix.routes.flows.flow_service.get_flow", new_callable=AsyncMock, return_value=None)
    update = mocker.patch("botrix.routes.flows.flow_service.update_flow", new_callable=AsyncMock)

    response = test_client.put(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH, json={"nodes": []})

    assert response.status_code == 404
    update.assert_not_awaited()


def test_editing_a_live_flow_into_an_invalid_graph_is_rejected(test_client, mocker):
    mocker.patch(
        "botrix.routes.flows.flow_service.get_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(_valid_graph(), version=2, is_active=True)
    )
    update = mocker.patch("botrix.routes.flows.flow_service.update_flow", new_callable=AsyncMock)

    body = {
        "nodes": [node("start", content="Hi"), node("b", content="b"), node("c", content="c")],
        "connections": [edge("start", "b"), edge("b", "c"), edge("c", "b")],
    }
    response = test_client.put(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH, json=body)

    assert response.status_code == 422
    assert "Flow contains cycles which are not allowed" in response.json()["detail"]["errors"]
    update.assert_not_awaited()


def test_deactivating_edit_of_a_live_flow_skips_validation(test_client, mocker):
    mocker.patch(
        "botrix.routes.flows.flow_service.get_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(_valid_graph(), version=2, is_active=True)
    )
    saved = make_stored_flow(make_graph([node("start", content="Hi"), node("lost", content="?")]), version=3)
    update = mocker.patch("botrix.routes.flows.flow_service.update_flow", new_callable=AsyncMock, return_value=saved)

    body = {"nodes": [node("start", content="Hi"), node("lost", content="?")], "isActive": False}
    response = test_client.put(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH, json=body)

    assert response.status_code == 200
    assert update.await_args.kwargs["is_active"] is False


def test_activating_invalid_flow_is_rejected(test_client, mocker):
    broken = make_graph([node("start", content="Hello"), node("lost", content="?")])
    mocker.patch(
        "botrix.routes.flows.flow_service.get_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(broken)
    )
    toggle = mocker.patch("botrix.routes.flows.flow_service.toggle_flow", new_callable=AsyncMock)

    response = test_client.put(f"{API_PREFIX}/bots/bot-1/flow/status", headers=AUTH, json={"isActive": True})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert 'Node "Lost" is unreachable' in detail["errors"]
    assert detail["warnings"] == ['Node "Lost" is not connected']
    toggle.assert_not_awaited()


def test_activating_valid_flow(test_client, mocker):
    graph = _valid_graph()
    mocker.patch(
        "botrix.routes.flows.flow_service.get_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(graph)
    )
    mocker.patch(
        "botrix.routes.flows.flow_service.toggle_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(graph, is_active=True)
    )

    response = test_client.put(f"{API_PREFIX}/bots/bot-1/flow/status", headers=AUTH, json={"isActive": True})

    assert response.status_code == 200
    assert response.json()["message"] == "Flow activated"


def test_validate_posted_graph(test_client):
    body = {
        "nodes": [node("start", content="Hi"), node("b", content="b"), node("c", content="c")],
        "connections": [edge("start", "b"), edge("b", "c"), edge("c", "b")],
    }
    response = test_client.post(f"{API_PREFIX}/bots/bot-1/flow/validate", headers=AUTH, json=body)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["valid"] is False
    assert "Flow contains cycles which are not allowed" in data["errors"]


def test_test_turn_runs_current_flow(test_client, mocker, greeting_flow):
    mocker.patch(
        "botrix.routes.flows.flow_service.get_flow",
        new_callable=AsyncMock,
        return_value=make_stored_flow(greeting_flow, version=7)
    )

    response = test_client.post(
        f"{API_PREFIX}/bots/bot-1/flow/test",
        headers=AUTH,
        json={"message": "Sam", "context": {"lang": "en"}}
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["response"] == "Nice to meet you, Sam!"
    assert data["variables"] == {"lang": "en", "name": "Sam"}
    assert data["flowVersion"] == 7


def test_delete_flow(test_client, mocker):
    mocker.patch("botrix.routes.flows.flow_service.delete_flows", new_callable=AsyncMock, side_effect=[2, 0])
    assert test_client.delete(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH).json()["data"] == {"deleted": 2}
    assert test_client.delete(f"{API_PREFIX}/bots/bot-1/flow", headers=AUTH).status_code == 404


# --- Webhooks ---

MESSAGE = {"type": "text", "sessionId": "session-1", "content": {"text": "Hello"}}


def test_webhook_message_is_processed(test_client, mocker):
    process = mocker.patch(
        "botrix.routes.webhooks.conversation_service.process_turn",
        new_callable=AsyncMock,
        return_value={
            "response": strings.ACTION_EXECUTED,
            "variables": {},
            "actions": [Action(type="tag", data={"tag": "vip"})]
        }
    )
    body, headers = _signed(MESSAGE)

    response = test_client.post(f"{API_PREFIX}/webhooks/bots/bot-1/messages", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["data"] == {
        "response": strings.ACTION_EXECUTED,
        "actions": [{"type": "tag", "data": {"tag": "vip"}}]
    }
    process.assert_awaited_once_with("bot-1", "session-1", "Hello")


def test_webhook_invalid_signature(test_client, mocker):
    process = mocker.patch("botrix.routes.webhooks.conversation_service.process_turn", new_callable=AsyncMock)
    body, headers = _signed(MESSAGE)
    headers["x-webhook-signature"] = "0" * 64

    response = test_client.post(f"{API_PREFIX}/webhooks/bots/bot-1/messages", content=body, headers=headers)

    assert response.status_code == 403
    process.assert_not_awaited()


def test_webhook_forbidden_origin(test_client):
    body, headers = _signed(MESSAGE)
    headers["Origin"] = "https://attacker.example.net"
    response = test_client.post(f"{API_PREFIX}/webhooks/bots/bot-1/messages", content=body, headers=headers)
    assert response.status_code == 403


def test_webhook_rejects_non_text_and_missing_session(test_client, mocker):
    mocker.patch("botrix.routes.webhooks.conversation_service.process_turn", new_callable=AsyncMock)

    body, headers = _signed({"type": "file", "sessionId": "s", "content": {"url": "https://cdn.example.com/a.png"}})
    assert test_client.post(f"{API_PREFIX}/webhooks/bots/bot-1/messages", content=body, headers=headers).status_code == 400

    body, headers = _signed({"type": "text", "content": {"text": "hi"}})
    response = test_client.post(f"{API_PREFIX}/webhooks/bots/bot-2/messages", content=body, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Payload must contain sessionId"


def test_webhook_rate_limit_per_bot(test_client, mocker):
    mocker.patch(
        "botrix.routes.webhooks.conversation_service.process_turn",
        new_callable=AsyncMock,
        return_value={"response": "ok", "variables": {}, "actions": []}
    )
    body, headers = _signed(MESSAGE)
    url = f"{API_PREFIX}/webhooks/bots/bot-1/messages"

    statuses = [test_client.post(url, content=body, headers=headers).status_code for _ in range(4)]
    assert statuses == [200, 200, 200, 429]

    other = test_client.post(f"{API_PREFIX}/webhooks/bots/bot-2/messages", content=body, headers=headers)
    assert other.status_code == 200


def test_webhook_url_check_rejects_local_urls(test_client):
    response = test_client.post(f"{API_PREFIX}/webhooks/test", headers=AUTH, json={"url": "http://localhost:9000/hook"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Local webhook URLs are not allowed"


def test_webhook_url_check_reports_result(test_client, mocker):
    mocker.patch(
        "botrix.routes.webhooks.webhook_security_service.test_webhook",
        new_callable=AsyncMock,
        return_value={"success": True, "status_code": 204, "response_time_ms": 12, "error": None}
    )
    response = test_client.post(f"{API_PREFIX}/webhooks/test", headers=AUTH, json={"url": "https://hooks.example.com/in"})

    assert response.status_code == 200
    assert response.json()["data"]["status_code"] == 204


def test_webhook_rejects_non_string_text(test_client, mocker):
    process = mocker.patch("botrix.routes.webhooks.conversation_service.process_turn", new_callable=AsyncMock)
    body, headers = _signed({"type": "text", "sessionId": "session-1", "content": {"text": 12345}})

    response = test_client.post(f"{API_PREFIX}/webhooks/bots/bot-1/messages", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Text payload must contain content.text"
    process.assert_not_awaited()

import pytest
from kink import di

from agente_vendedor.api.app import create_app
from agente_vendedor.domain.services.outbound_dispatcher import OutboundDispatcher
from conftest import CHAT_ID


@pytest.fixture
def client(settings, policy, gateway, pacing):
    app = create_app(settings, policy=policy, gateway=gateway, pacing=pacing, create_schema=True)
    app.config.update(TESTING=True)
    yield app.test_client()
    di[OutboundDispatcher].shutdown(wait=True)


def _drain():
    di[OutboundDispatcher].shutdown(wait=True)


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"ok": True}


def test_webhook_processes_incoming_message(client, provider, make_payload):
    resp = client.post("/webhook/green-api", json=make_payload(), headers={"X-Trace-Id": "trace-1"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["result"]["processed"] is True
    assert body["result"]["is_new_client"] is True
    _drain()
    assert len(provider.requests) == 1


def test_webhook_always_200(client, policy, make_payload):
    assert client.post("/webhook/green-api", data="not json").status_code == 200
    ignored = client.post("/webhook/green-api", json=make_payload(fromMe=True)).get_json()
    assert ignored["success"] is True
    assert ignored["result"]["reason"] == "outbound_echo"

    policy.error = RuntimeError("llm down")
    failed = client.post("/webhook/green-api", json=make_payload(id_message="X-2"))
    assert failed.status_code == 200
    assert failed.get_json()["result"]["success"] is False


def test_status_callbacks_update_delivery(client, make_payload):
    client.post("/webhook/green-api", json=make_payload())
    _drain()
    detail = client.get("/conversations").get_json()["conversations"][0]
    messages = client.get(f"/conversations/{detail['id']}").get_json()["messages"]
    provider_id = messages[-1]["provider_message_id"]

    resp = client.post("/webhook/green-api", json={
        "typeWebhook": "outgoingMessageStatus", "idMessage": provider_id, "status": "delivered",
    })
    assert resp.status_code == 200
    assert resp.get_json()["status_update"] == {"processed": True, "status": "delivered", "changed": True}

    replay = client.post("/webhook/status", json={"idMessage": provider_id, "status": "delivered"})
    assert replay.get_json()["status_update"]["changed"] is False
    unknown = client.post("/webhook/status", json={"idMessage": "nope", "status": "read"})
    assert unknown.status_code == 200
    assert unknown.get_json()["status_update"]["processed"] is False


def test_start_conversation_from_order(client, provider):
    resp = client.post("/conversations/start", json={
        "order_id": "A-1", "client_phone": "690000001", "client_name": "Awa", "product_name": "Montre",
    })
    assert resp.status_code == 200
    assert resp.get_json()["responded"] is True
    _drain()
    assert provider.requests[0]["chatId"] == CHAT_ID

    assert client.post("/conversations/start", json={"client_phone": "690000001"}).status_code == 400
    bad_phone = client.post("/conversations/start", json={"order_id": "A-2", "client_phone": "12"})
    assert bad_phone.status_code == 422


def test_conversation_admin_endpoints(client, make_payload):
    client.post("/webhook/green-api", json=make_payload())
    _drain()
    listing = client.get("/conversations?active=true").get_json()
    assert listing["count"] == 1
    conv_id = listing["conversations"][0]["id"]

    detail = client.get(f"/conversations/{conv_id}").get_json()
    assert detail["chat_id"] == CHAT_ID
    assert [m["direction"] for m in detail["messages"]] == ["inbound", "outbound"]
    assert client.get("/conversations/9999").status_code == 404

    assert client.post(f"/conversations/{conv_id}/close", json={"state": "bogus"}).status_code == 400
    closed = client.post(f"/conversations/{conv_id}/close", json={"state": "cancelled"}).get_json()
    assert closed["state"] == "cancelled"
    assert closed["active"] is False
    assert client.get("/conversations?active=true").get_json()["count"] == 0

    stats = client.get("/stats").get_json()
    assert stats["total"] == 1
    assert stats["cancellation_rate"] == 100.0


def test_manual_relance_and_jobs(client, make_payload):
    client.post("/webhook/green-api", json=make_payload())
    _drain()
    conv_id = client.get("/conversations").get_json()["conversations"][0]["id"]

    nudged = client.post(f"/conversations/{conv_id}/relance").get_json()
    assert nudged["job"] == "relance_one"
    assert nudged["succeeded"] == 1
    assert client.post("/conversations/9999/relance").status_code == 404

    run = client.post("/relance/run").get_json()
    assert run["job"] == "relance" and run["skipped"] is False
    cleanup = client.post("/cleanup/stale").get_json()
    assert cleanup == {"job": "cleanup", "skipped": False, "checked": 0, "succeeded": 0, "failed": 0, "deactivated": 0}

    status = client.get("/jobs/status").get_json()
    assert status["running"] is False
    assert status["jobs"] == []

import json

import httpx

from agente_vendedor.connectors.whatsapp.green_api_adapter import GreenApiAdapter
from agente_vendedor.core.logging import configure_logging
from agente_vendedor.domain.services.conversation_engine import ConversationEngine
from agente_vendedor.domain.services.outbound_dispatcher import OutboundDispatcher
from agente_vendedor.ports.interfaces import PedidoDTO, PolicyDecision
from conftest import CHAT_ID, make_settings


def test_turn_replies_after_human_delay(engine, store, policy, provider, recording_sleep):
    conv, _ = store.find_or_create(CHAT_ID, {"client_name": "Awa"})
    turn = engine.handle_message(conv, "Bonjour", "ID-1")
    assert turn.processed and turn.responded
    assert turn.state == "pending_confirmation"
    assert turn.confidence_score == 50
    assert turn.delivery.result(timeout=5) is True

    outbound = store.get_message(turn.outbound_message_id)
    assert outbound.delivery_status == "sent"
    assert outbound.provider_message_id == "BAE50001"
    assert "processing_time_ms" in outbound.extra
    assert "response_time_ms" in outbound.extra
    assert provider.requests == [{"chatId": CHAT_ID, "message": policy.default.reply_text}]
    assert len(recording_sleep.calls) == 1
    assert 2 <= recording_sleep.calls[0] <= 5


def test_history_is_passed_to_policy(engine, store, policy):
    conv, _ = store.find_or_create(CHAT_ID)
    engine.handle_message(conv, "Bonjour", "ID-1").delivery.result(timeout=5)
    engine.handle_message(conv, "C'est combien ?", "ID-2").delivery.result(timeout=5)
    _, text, history = policy.calls[-1]
    assert text == "C'est combien ?"
    assert [(h["sender"], h["content"]) for h in history] == [
        ("client", "Bonjour"),
        ("agent", policy.default.reply_text),
        ("client", "C'est combien ?"),
    ]


def test_confirmation_closes_conversation(engine, store, policy):
    policy.decisions["Oui livrez-moi"] = PolicyDecision(
        intent="confirmation", sentiment="positive", confidence_delta=40,
        reply_text="Parfait, le livreur arrive !", next_state="confirmed",
    )
    conv, _ = store.find_or_create(CHAT_ID)
    turn = engine.handle_message(conv, "Oui livrez-moi", "ID-1")
    assert turn.state == "confirmed"
    assert turn.confidence_score == 90
    assert turn.responded
    turn.delivery.result(timeout=5)
    current = store.get(conv.id)
    assert not current.active
    assert current.confirmed_at is not None


def test_duplicate_message_is_a_no_op(engine, store, policy):
    conv, _ = store.find_or_create(CHAT_ID)
    engine.handle_message(conv, "Bonjour", "ID-1").delivery.result(timeout=5)
    turn = engine.handle_message(conv, "Bonjour", "ID-1")
    assert not turn.processed
    assert turn.reason == "already_processed"
    assert len(policy.calls) == 1


def test_terminal_conversation_gets_no_reply(engine, store, policy):
    conv, _ = store.find_or_create(CHAT_ID)
    store.close(conv.id, "cancelled")
    turn = engine.handle_message(store.get(conv.id), "Finalement oui", "ID-9")
    assert turn.processed
    assert not turn.responded
    assert turn.reason == "terminal_state"
    assert policy.calls == []
    assert [m.direction for m in store.messages(conv.id)] == ["inbound"]


def test_no_reply_text_means_no_outbound(engine, store, policy):
    policy.decisions["ok"] = PolicyDecision(intent="thanks", reply_text="   ")
    conv, _ = store.find_or_create(CHAT_ID)
    turn = engine.handle_message(conv, "ok", "ID-1")
    assert turn.processed
    assert not turn.responded
    assert turn.delivery is None
    assert turn.outbound_message_id is None


def test_send_failure_marks_message_failed(engine, store, provider):
    provider.fail_for.add(CHAT_ID)
    conv, _ = store.find_or_create(CHAT_ID)
    turn = engine.handle_message(conv, "Bonjour", "ID-1")
    assert turn.processed
    assert turn.delivery.result(timeout=5) is False
    outbound = store.get_message(turn.outbound_message_id)
    assert outbound.delivery_status == "failed"
    assert "provider unavailable" in outbound.error_message


def test_unconfigured_gateway_marks_message_failed(tmp_path, store, policy, pacing, provider):
    s = make_settings(tmp_path, green_api_id_instance="", green_api_token_instance="")
    client = httpx.Client(transport=httpx.MockTransport(provider))
    gateway = GreenApiAdapter(s, client=client)
    dispatcher = OutboundDispatcher(store, gateway, pacing, max_workers=1)
    engine = ConversationEngine(store, policy, dispatcher, gateway, s)
    conv, _ = store.find_or_create(CHAT_ID)
    turn = engine.handle_message(conv, "Bonjour", "ID-1")
    assert turn.delivery.result(timeout=5) is False
    dispatcher.shutdown()
    assert store.get_message(turn.outbound_message_id).delivery_status == "failed"
    assert provider.requests == []


def test_start_for_order_sends_initial_message(engine, store, provider):
    order = PedidoDTO(order_id="A-1", client_phone="690000001", client_name="Awa", product_name="Montre")
    turn = engine.start_for_order(order)
    assert turn.processed and turn.responded
    assert turn.delivery.result(timeout=5) is True
    conv = store.find_by_address(CHAT_ID)
    assert conv.order_id == "A-1"
    assert conv.client_phone == "237690000001"
    assert provider.requests == [{"chatId": CHAT_ID, "message": "Bonjour Awa, commande A-1"}]
    assert store.get_message(turn.outbound_message_id).intent == "greeting"


def test_start_for_order_rejects_unusable_phone(engine, store):
    order = PedidoDTO(order_id="A-1", client_phone="12", client_name="Awa")
    turn = engine.start_for_order(order)
    assert not turn.processed
    assert turn.reason == "invalid_address"
    assert store.list_conversations() == []


def test_dispatch_error_is_logged_and_resolves_false(dispatcher, store, provider, monkeypatch, capsys):
    configure_logging("INFO")
    conv, _ = store.find_or_create(CHAT_ID)
    outbound = store.add_outbound(conv.id, "Bonjour", intent="greeting")

    def broken_mark_sent(*args, **kwargs):
        raise RuntimeError("database is gone")

    monkeypatch.setattr(store, "mark_sent", broken_mark_sent)
    assert dispatcher.submit(outbound.id, CHAT_ID, "Bonjour").result(timeout=5) is False

    events = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    failed = [e for e in events if e["event"] == "outbound_dispatch_failed"]
    assert len(failed) == 1
    assert failed[0]["level"] == "error"
    assert failed[0]["message_id"] == outbound.id
    assert "database is gone" in failed[0]["exception"]
    assert store.get_message(outbound.id).delivery_status == "pending"

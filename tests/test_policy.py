import json
from types import SimpleNamespace

import httpx
import pytest

from agente_vendedor.core.errors import NotConfiguredError
from agente_vendedor.core.llm_client import LLMClient
from agente_vendedor.core.prompting import PromptBuilder
from agente_vendedor.domain.services.policy import LLMConversationPolicy, first_name
from agente_vendedor.ports.interfaces import PolicyDecision
from conftest import make_settings


def _conversation(**overrides):
    values = dict(client_name="Awa Ngono", product_name="Montre", product_price=15000,
                  state="pending_confirmation", confidence_score=50, relance_count=0, order_id="A-1")
    values.update(overrides)
    return SimpleNamespace(**values)


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _policy(tmp_path, handler):
    s = make_settings(tmp_path, litellm_base_url="https://llm.test", litellm_model_fallback="backup-model")
    llm = LLMClient(s, transport=httpx.MockTransport(handler))
    return LLMConversationPolicy(llm, PromptBuilder(loja_nome="Boutique Test"))


def test_classify_and_respond_parses_decision(tmp_path):
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body)
        return _completion(json.dumps({
            "intent": "confirmation", "sentiment": "positive", "confidence_delta": 30,
            "reply_text": "  Super, à cet après-midi !  ", "next_state": "confirmed",
        }))

    decision = _policy(tmp_path, handler).classify_and_respond(
        _conversation(), "Oui", [{"sender": "agent", "direction": "outbound", "content": "Bonjour"}]
    )
    assert decision == PolicyDecision(intent="confirmation", sentiment="positive", confidence_delta=30,
                                      reply_text="Super, à cet après-midi !", next_state="confirmed")
    system, user = (m["content"] for m in seen[0]["messages"])
    assert "Boutique Test" in system
    assert "Montre" in system
    assert 'Message client: "Oui"' in user
    assert "Agent: Bonjour" in user
    assert seen[0]["response_format"] == {"type": "json_object"}


def test_classify_falls_back_to_second_model(tmp_path):
    models = []

    def handler(request):
        body = json.loads(request.content)
        models.append(body["model"])
        if len(models) == 1:
            return _completion("not json at all")
        return _completion('{"intent": "question", "reply_text": "Oui bien sûr"}')

    decision = _policy(tmp_path, handler).classify_and_respond(_conversation(), "Livraison ?", [])
    assert models == ["gpt-4o-mini", "backup-model"]
    assert decision.intent == "question"
    assert decision.next_state is None


def test_llm_without_base_url_is_not_configured(tmp_path):
    llm = LLMClient(make_settings(tmp_path))
    with pytest.raises(NotConfiguredError):
        llm.complete_json("s", "u", PolicyDecision)


def test_initial_and_relance_messages(tmp_path):
    policy = _policy(tmp_path, lambda r: _completion("{}"))
    assert policy.initial_message(_conversation()).startswith("Bonjour Awa 👋 Nous avons bien reçu votre commande de Montre.")
    assert policy.initial_message(_conversation(client_name="", product_name="")).startswith(
        "Bonjour 👋 Nous avons bien reçu votre commande."
    )
    first = policy.relance_message(_conversation(), 1, [])
    third = policy.relance_message(_conversation(), 3, [])
    assert first != third
    assert policy.relance_message(_conversation(), 7, []) == first


def test_first_name():
    assert first_name(_conversation(client_name="  Awa Ngono ")) == "Awa"
    assert first_name(_conversation(client_name="")) == "cher client"

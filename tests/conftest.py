import json
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List

import httpx
import pytest
import structlog

from agente_vendedor.connectors.whatsapp.green_api_adapter import GreenApiAdapter
from agente_vendedor.core import logging as app_logging
from agente_vendedor.core.db import create_session_factory
from agente_vendedor.core.pacing import PacingPolicy
from agente_vendedor.core.settings import Settings
from agente_vendedor.domain.services.conversation_engine import ConversationEngine
from agente_vendedor.domain.services.ingestion import WebhookIngestion
from agente_vendedor.domain.services.outbound_dispatcher import OutboundDispatcher
from agente_vendedor.ports.interfaces import PolicyDecision
from agente_vendedor.repo.store import ConversationStore

CHAT_ID = "237690000001@c.us"


@pytest.fixture(autouse=True)
def _reset_logging_config():
    """Isola o structlog entre testes: configure_logging fixa o sys.stdout do momento
    (capturado pelo pytest), que é fechado ao fim de cada teste."""
    yield
    structlog.reset_defaults()
    app_logging._configured = False


class RecordingSleep:
    """Substitui time.sleep: registra os atrasos sem dormir."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@dataclass
class FakeProvider:
    """Simula o endpoint sendMessage da Green API via httpx.MockTransport."""

    fail_for: set = field(default_factory=set)
    requests: List[Dict[str, Any]] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    _counter: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        with self._lock:
            self.requests.append(body)
            self.urls.append(str(request.url))
            if body["chatId"] in self.fail_for:
                return httpx.Response(500, json={"error": "provider unavailable"})
            self._counter += 1
            return httpx.Response(200, json={"idMessage": f"BAE5{self._counter:04d}", "timestamp": 1700000000})


class FakePolicy:
    """ConversationPolicy determinística: decisões por texto recebido."""

    def __init__(self):
        self.decisions: Dict[str, PolicyDecision] = {}
        self.default = PolicyDecision(
            intent="greeting",
            sentiment="positive",
            confidence_delta=0,
            reply_text="Bonjour ! On vous livre cet après-midi ?",
        )
        self.calls: List[tuple] = []
        self.error: Exception | None = None

    def classify_and_respond(self, conversation, text, history):
        self.calls.append((conversation.id, text, history))
        if self.error is not None:
            raise self.error
        return self.decisions.get(text, self.default)

    def relance_message(self, conversation, relance_number, history):
        return f"Relance {relance_number} pour {conversation.client_name}"

    def initial_message(self, conversation):
        return f"Bonjour {conversation.client_name}, commande {conversation.order_id}"


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        database_url=f"sqlite:///{tmp_path / 'agente.db'}",
        green_api_id_instance="1101000001",
        green_api_token_instance="token-abc",
        green_api_url="https://api.green.test",
        scheduler_enabled=False,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def store(settings):
    return ConversationStore(create_session_factory(settings.database_url, create_schema=True), settings)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def gateway(settings, provider):
    client = httpx.Client(transport=httpx.MockTransport(provider))
    yield GreenApiAdapter(settings, client=client)
    client.close()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def pacing(recording_sleep):
    return PacingPolicy(human_delay_min_s=2, human_delay_max_s=5, inter_task_s=10,
                        sleep=recording_sleep, rng=random.Random(7))


@pytest.fixture
def policy():
    return FakePolicy()


@pytest.fixture
def dispatcher(store, gateway, pacing):
    d = OutboundDispatcher(store, gateway, pacing, max_workers=2)
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def engine(store, policy, dispatcher, gateway, settings):
    return ConversationEngine(store, policy, dispatcher, gateway, settings)


@pytest.fixture
def ingestion(gateway, store, engine):
    return WebhookIngestion(gateway, store, engine)


@pytest.fixture
def make_payload():
    def _make(text="Bonjour", chat_id=CHAT_ID, id_message="3EB0C767D0D1", **overrides):
        payload = {
            "typeWebhook": "incomingMessageReceived",
            "instanceData": {"idInstance": 1101000001, "wid": "237600000000@c.us", "typeInstance": "whatsapp"},
            "timestamp": 1700000000,
            "idMessage": id_message,
            "senderData": {"chatId": chat_id, "sender": chat_id, "senderName": "Awa Ngono"},
            "messageData": {"typeMessage": "textMessage", "textMessageData": {"textMessage": text}},
        }
        payload.update(overrides)
        return payload

    return _make

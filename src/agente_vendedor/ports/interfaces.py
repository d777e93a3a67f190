
"""Portas hexagonais (interfaces) e DTOs."""
from __future__ import annotations
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from pydantic import BaseModel, ConfigDict, Field

class MensagemEntradaDTO(BaseModel):
    """Evento de entrada canônico extraído do webhook do provedor."""
    chat_id: str
    provider_message_id: str
    texto: str
    sender_name: str = "Client"
    sender_phone: str = ""
    timestamp: int | None = None

class EntregaDTO(BaseModel):
    """Resultado de um envio aceito pelo provedor."""
    provider_message_id: str
    sent_at: datetime

class PedidoDTO(BaseModel):
    """Pedido (colaborador externo) usado para semear uma conversa."""
    order_id: str
    client_phone: str
    client_name: str = ""
    product_name: str = ""
    product_price: float = 0
    workspace_id: str | None = None

class PolicyDecision(BaseModel):
    """Saída do colaborador opaco de NLU/geração de resposta."""
    intent: str = "unknown"
    sentiment: str = "unknown"
    confidence_delta: int = 0
    reply_text: str | None = None
    next_state: str | None = None

class IngestResult(BaseModel):
    """Resultado estruturado da ingestão; nunca vira erro HTTP."""
    success: bool = True
    processed: bool = False
    reason: str | None = None
    error: str | None = None
    conversation_id: int | None = None
    state: str | None = None
    confidence_score: int | None = None
    response_scheduled: bool = False
    outbound_message_id: int | None = None
    is_new_client: bool = False

class TurnResult(BaseModel):
    """Resultado de um turno da máquina de estados."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    processed: bool
    responded: bool = False
    state: str | None = None
    confidence_score: int | None = None
    outbound_message_id: int | None = None
    reason: str | None = None
    delivery: Future | None = Field(default=None, exclude=True)

class DeliveryStatusResult(BaseModel):
    processed: bool
    status: str | None = None
    changed: bool = False

class JobSummary(BaseModel):
    """Resumo de uma execução de job periódico."""
    job: str
    skipped: bool = False
    checked: int = 0
    succeeded: int = 0
    failed: int = 0
    deactivated: int = 0

@runtime_checkable
class GatewayPort(Protocol):
    """Provedor de mensageria: leitura do webhook, endereço e envio."""
    def parse_incoming(self, raw: dict) -> MensagemEntradaDTO: ...
    def normalize_address(self, raw: str | None) -> str | None: ...
    def send(self, address: str, text: str) -> EntregaDTO: ...

class ConversationPolicy(Protocol):
    """Estratégia injetada de NLU + redação de resposta."""
    def classify_and_respond(self, conversation: Any, text: str, history: list[dict]) -> PolicyDecision: ...
    def relance_message(self, conversation: Any, relance_number: int, history: list[dict]) -> str: ...
    def initial_message(self, conversation: Any) -> str: ...


"""Máquina de estados da conversa de venda: um turno por mensagem recebida."""
from __future__ import annotations
import time
from kink import di
from ...core.guardrails import clip_reply
from ...core.settings import Settings
from ...core.logging import get_logger
from ...ports.interfaces import ConversationPolicy, GatewayPort, PedidoDTO, TurnResult
from ...repo.models import AgentConversation
from ...repo.store import ConversationStore
from .outbound_dispatcher import OutboundDispatcher

log = get_logger()

class ConversationEngine:
    """Aplica a decisão da política à conversa e agenda a resposta.

    O envio nunca acontece dentro da transação: a resposta é gravada como
    `pending` e entregue ao OutboundDispatcher.
    """
    def __init__(self, store: ConversationStore | None = None, policy: ConversationPolicy | None = None,
                 dispatcher: OutboundDispatcher | None = None, gateway: GatewayPort | None = None,
                 settings: Settings | None = None):
        self.store = store or di[ConversationStore]
        self.policy = policy or di[ConversationPolicy]
        self.dispatcher = dispatcher or di[OutboundDispatcher]
        self.gateway = gateway or di[GatewayPort]
        self.settings = settings or di[Settings]

    def handle_message(self, conversation: AgentConversation, text: str, message_id: str) -> TurnResult:
        started = time.monotonic()
        recorded = self.store.record_inbound(conversation.id, message_id, text)
        if recorded is None:
            log.debug("message_already_processed", conversation_id=conversation.id, provider_message_id=message_id)
            return TurnResult(processed=False, reason="already_processed",
                              state=conversation.state, confidence_score=conversation.confidence_score)
        inbound, conv = recorded

        if conv.is_terminal:
            log.info("message_on_terminal_conversation", conversation_id=conv.id, state=conv.state)
            return TurnResult(processed=True, reason="terminal_state",
                              state=conv.state, confidence_score=conv.confidence_score)

        history = self.store.history(conv.id, limit=self.settings.history_limit)
        decision = self.policy.classify_and_respond(conv, text, history)
        reply = clip_reply(decision.reply_text)
        extra = {"processing_time_ms": int((time.monotonic() - started) * 1000)}
        conv, outbound = self.store.apply_turn(conv.id, inbound.id, decision, reply, extra=extra)
        log.info(
            "turn_applied",
            conversation_id=conv.id,
            intent=decision.intent,
            state=conv.state,
            confidence_score=conv.confidence_score,
            responded=outbound is not None,
        )

        delivery = None
        if outbound is not None:
            delivery = self.dispatcher.submit(outbound.id, conv.chat_id, outbound.content)
        return TurnResult(
            processed=True,
            responded=outbound is not None,
            state=conv.state,
            confidence_score=conv.confidence_score,
            outbound_message_id=outbound.id if outbound is not None else None,
            delivery=delivery,
        )

    def start_for_order(self, order: PedidoDTO) -> TurnResult:
        """Semeia a conversa de um pedido e envia a mensagem inicial."""
        address = self.gateway.normalize_address(order.client_phone)
        if address is None:
            log.warning("order_address_unusable", order_id=order.order_id, client_phone=order.client_phone)
            return TurnResult(processed=False, reason="invalid_address")
        conv, created = self.store.create_for_order(order, address)
        text = self.policy.initial_message(conv)
        outbound = self.store.add_outbound(conv.id, text, intent="greeting")
        log.info("order_conversation_started", conversation_id=conv.id, order_id=order.order_id, created=created)
        delivery = self.dispatcher.submit(outbound.id, address, text)
        return TurnResult(
            processed=True,
            responded=True,
            state=conv.state,
            confidence_score=conv.confidence_score,
            outbound_message_id=outbound.id,
            delivery=delivery,
        )

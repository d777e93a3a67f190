
"""Ingestão de webhooks de mensagens recebidas.

Descartes silenciosos (eco, grupo, texto vazio, duplicata) viram sucesso sem
processamento; o provedor nunca recebe erro por causa deles.
"""
from __future__ import annotations
from kink import di
from ...core.errors import ParseError
from ...core.logging import get_logger
from ...ports.interfaces import GatewayPort, IngestResult
from ...repo.store import ConversationStore
from .conversation_engine import ConversationEngine

log = get_logger()

class WebhookIngestion:
    def __init__(self, gateway: GatewayPort | None = None, store: ConversationStore | None = None,
                 engine: ConversationEngine | None = None):
        self.gateway = gateway or di[GatewayPort]
        self.store = store or di[ConversationStore]
        self.engine = engine or di[ConversationEngine]

    def handle(self, raw: dict) -> IngestResult:
        """Processa um payload bruto do provedor. Nunca levanta exceção."""
        try:
            return self._handle(raw)
        except Exception as exc:
            log.exception("webhook_ingestion_failed")
            return IngestResult(success=False, error=str(exc) or exc.__class__.__name__)

    def _handle(self, raw: dict) -> IngestResult:
        try:
            msg = self.gateway.parse_incoming(raw)
        except ParseError as exc:
            log.debug("webhook_ignored", reason=exc.reason)
            return IngestResult(reason=exc.reason)

        address = self.gateway.normalize_address(msg.chat_id)
        if address is None:
            # Descarte duro: o operador precisa ver, mas o provedor recebe sucesso
            log.warning("webhook_address_unusable", chat_id=msg.chat_id, provider_message_id=msg.provider_message_id)
            return IngestResult(reason="invalid_address")

        seed = {
            "client_name": msg.sender_name,
            "client_phone": address.split("@", 1)[0],
            "extra": {"source": "direct_whatsapp", "first_message": msg.texto},
        }
        conv, created = self.store.find_or_create(address, seed)

        if conv.is_message_processed(msg.provider_message_id):
            log.debug("webhook_ignored", reason="already_processed", conversation_id=conv.id)
            return IngestResult(reason="already_processed", conversation_id=conv.id,
                                state=conv.state, confidence_score=conv.confidence_score)

        if not conv.active:
            self.store.reactivate(conv.id)
            conv.active = True

        turn = self.engine.handle_message(conv, msg.texto, msg.provider_message_id)
        return IngestResult(
            processed=turn.processed,
            reason=turn.reason,
            conversation_id=conv.id,
            state=turn.state,
            confidence_score=turn.confidence_score,
            response_scheduled=turn.responded,
            outbound_message_id=turn.outbound_message_id,
            is_new_client=created,
        )

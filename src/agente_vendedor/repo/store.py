
"""Repositório de conversas: idempotência, turnos, relances e limpeza.

Cada operação abre sua própria sessão/transação. As escritas concorrentes na
mesma conversa são serializadas por `SELECT ... FOR UPDATE` e a criação por
endereço pelo índice único (workspace_id, chat_id).
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Iterable
from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from .models import (
    AgentConversation, AgentMessage, utcnow,
    STATES, TERMINAL_STATES, STATE_PENDING, STATE_CONFIRMED, STATE_CANCELLED, STATE_ESCALATED, STATE_COMPLETED,
)
from ..core.errors import ConflictError
from ..core.logging import get_logger
from ..ports.interfaces import PolicyDecision, PedidoDTO

log = get_logger()

CONFIDENCE_MIN = 0
CONFIDENCE_MAX = 100

def clamp_confidence(value: int) -> int:
    return max(CONFIDENCE_MIN, min(CONFIDENCE_MAX, value))

def to_dict(row) -> dict:
    """Serializa uma linha ORM em dict JSON-friendly (datas em ISO)."""
    out = {}
    for col in row.__table__.columns:
        val = getattr(row, col.key)
        out[col.key] = val.isoformat() if isinstance(val, datetime) else val
    return out

class ConversationStore:
    """Persistência de AgentConversation/AgentMessage."""
    def __init__(self, session_factory, settings):
        self.Session = session_factory
        self.settings = settings

    def _workspace(self, workspace_id: str | None) -> str:
        return workspace_id or self.settings.default_workspace_id

    def _locked(self, s, conversation_id: int) -> AgentConversation:
        return s.execute(
            select(AgentConversation).where(AgentConversation.id == conversation_id).with_for_update()
        ).scalar_one()

    # ---------- Leitura ----------
    def get(self, conversation_id: int) -> AgentConversation | None:
        with self.Session() as s:
            return s.get(AgentConversation, conversation_id)

    def find_by_address(self, address: str, workspace_id: str | None = None) -> AgentConversation | None:
        """Busca a conversa (ativa ou não) do endereço no workspace."""
        with self.Session() as s:
            return s.execute(
                select(AgentConversation).where(
                    AgentConversation.workspace_id == self._workspace(workspace_id),
                    AgentConversation.chat_id == address,
                )
            ).scalars().first()

    def get_message(self, message_id: int) -> AgentMessage | None:
        with self.Session() as s:
            return s.get(AgentMessage, message_id)

    def messages(self, conversation_id: int, limit: int = 200) -> list[AgentMessage]:
        with self.Session() as s:
            return list(s.execute(
                select(AgentMessage).where(AgentMessage.conversation_id == conversation_id)
                .order_by(AgentMessage.created_at.asc(), AgentMessage.id.asc()).limit(limit)
            ).scalars().all())

    def history(self, conversation_id: int, limit: int = 10) -> list[dict]:
        """Últimas N mensagens em ordem cronológica, no formato usado pela política."""
        with self.Session() as s:
            rows = s.execute(
                select(AgentMessage).where(AgentMessage.conversation_id == conversation_id)
                .order_by(AgentMessage.created_at.desc(), AgentMessage.id.desc()).limit(limit)
            ).scalars().all()
        return [{"sender": r.sender, "direction": r.direction, "content": r.content} for r in reversed(rows)]

    def list_conversations(self, workspace_id: str | None = None, state: str | None = None,
                           active: bool | None = None, limit: int = 50, offset: int = 0) -> list[AgentConversation]:
        q = select(AgentConversation).where(AgentConversation.workspace_id == self._workspace(workspace_id))
        if state:
            q = q.where(AgentConversation.state == state)
        if active is not None:
            q = q.where(AgentConversation.active == active)
        q = q.order_by(AgentConversation.last_interaction_at.desc()).limit(limit).offset(offset)
        with self.Session() as s:
            return list(s.execute(q).scalars().all())

    # ---------- Criação ----------
    def find_or_create(self, address: str, seed: dict[str, Any] | None = None,
                       workspace_id: str | None = None) -> tuple[AgentConversation, bool]:
        """Create-if-absent atômico por endereço.

        :return: (conversa, criada_agora)
        """
        ws = self._workspace(workspace_id)
        conv = self.find_by_address(address, ws)
        if conv is not None:
            return conv, False
        try:
            return self._insert(address, seed or {}, ws), True
        except ConflictError:
            # Outra requisição criou a mesma conversa entre o SELECT e o INSERT
            log.info("conversation_create_conflict", chat_id=address)
            conv = self.find_by_address(address, ws)
            if conv is None:
                raise
            return conv, False

    def _insert(self, address: str, seed: dict[str, Any], workspace_id: str) -> AgentConversation:
        now = utcnow()
        try:
            with self.Session() as s, s.begin():
                conv = AgentConversation(
                    workspace_id=workspace_id,
                    chat_id=address,
                    client_name=seed.get("client_name", ""),
                    client_phone=seed.get("client_phone", ""),
                    order_id=seed.get("order_id"),
                    product_name=seed.get("product_name", ""),
                    product_price=seed.get("product_price", 0),
                    state=STATE_PENDING,
                    confidence_score=50,
                    relance_count=0,
                    active=True,
                    processed_message_ids=[],
                    extra=dict(seed.get("extra") or {}),
                    last_interaction_at=now,
                    created_at=now,
                )
                s.add(conv)
                s.flush()
        except IntegrityError as exc:
            raise ConflictError(f"conversa já existe para {address}") from exc
        log.info("conversation_created", conversation_id=conv.id, chat_id=address, workspace_id=workspace_id)
        return conv

    def create_for_order(self, order: PedidoDTO, address: str) -> tuple[AgentConversation, bool]:
        """Semeia (ou reabre) a conversa de um pedido."""
        seed = {
            "client_name": order.client_name,
            "client_phone": address.split("@", 1)[0],
            "order_id": order.order_id,
            "product_name": order.product_name,
            "product_price": order.product_price,
            "extra": {"source": "order"},
        }
        conv, created = self.find_or_create(address, seed, order.workspace_id)
        if created or (conv.order_id == order.order_id and conv.active):
            return conv, created
        # Novo pedido de um cliente já conhecido: novo ciclo de venda na mesma conversa
        with self.Session() as s, s.begin():
            row = self._locked(s, conv.id)
            row.order_id = order.order_id
            row.product_name = order.product_name
            row.product_price = order.product_price
            row.client_name = order.client_name or row.client_name
            row.state = STATE_PENDING
            row.confidence_score = 50
            row.relance_count = 0
            row.active = True
            row.last_interaction_at = utcnow()
        log.info("conversation_reopened_for_order", conversation_id=conv.id, order_id=order.order_id)
        return row, False

    def save(self, conversation: AgentConversation) -> None:
        with self.Session() as s, s.begin():
            s.merge(conversation)

    def reactivate(self, conversation_id: int) -> bool:
        with self.Session() as s, s.begin():
            res = s.execute(
                update(AgentConversation)
                .where(AgentConversation.id == conversation_id, AgentConversation.active.is_(False))
                .values(active=True, last_interaction_at=utcnow())
            )
        if res.rowcount:
            log.info("conversation_reactivated", conversation_id=conversation_id)
        return bool(res.rowcount)

    # ---------- Turno de conversa ----------
    def record_inbound(self, conversation_id: int, provider_message_id: str, text: str,
                       now: datetime | None = None) -> tuple[AgentMessage, AgentConversation] | None:
        """Grava a mensagem recebida e marca o id como processado, atomicamente.

        :return: (mensagem, conversa) ou None se o id já foi processado.
        """
        now = now or utcnow()
        retention = self.settings.processed_ids_retention
        try:
            with self.Session() as s, s.begin():
                conv = self._locked(s, conversation_id)
                if conv.is_message_processed(provider_message_id):
                    return None
                msg = AgentMessage(
                    conversation_id=conv.id,
                    workspace_id=conv.workspace_id,
                    direction="inbound",
                    sender="client",
                    content=text,
                    provider_message_id=provider_message_id,
                    delivery_status="delivered",
                    created_at=now,
                )
                s.add(msg)
                ids = list(conv.processed_message_ids or [])
                ids.append(provider_message_id)
                if retention and len(ids) > retention:
                    ids = ids[-retention:]
                conv.processed_message_ids = ids
                conv.last_interaction_at = now
                conv.last_client_message_at = now
                conv.message_count = (conv.message_count or 0) + 1
                conv.client_message_count = (conv.client_message_count or 0) + 1
                s.flush()
        except IntegrityError:
            log.info("inbound_duplicate_rejected", conversation_id=conversation_id, provider_message_id=provider_message_id)
            return None
        return msg, conv

    def apply_turn(self, conversation_id: int, inbound_message_id: int, decision: PolicyDecision,
                   reply_text: str | None, extra: dict | None = None,
                   now: datetime | None = None) -> tuple[AgentConversation, AgentMessage | None]:
        """Aplica a decisão da política: confiança, estado e resposta pendente."""
        now = now or utcnow()
        with self.Session() as s, s.begin():
            conv = self._locked(s, conversation_id)
            inbound = s.get(AgentMessage, inbound_message_id)
            if inbound is not None:
                inbound.intent = decision.intent
                inbound.sentiment = decision.sentiment
                inbound.confidence_impact = decision.confidence_delta
            conv.confidence_score = clamp_confidence((conv.confidence_score or 0) + decision.confidence_delta)
            conv.sentiment = decision.sentiment
            next_state = decision.next_state if decision.next_state in STATES else conv.state
            if next_state != conv.state:
                self._transition(conv, next_state, now)
            outbound = None
            if reply_text:
                outbound = self._new_outbound(
                    s, conv, reply_text,
                    intent="closing" if next_state == STATE_CONFIRMED else "follow_up",
                    extra=extra, now=now,
                )
            if conv.state in TERMINAL_STATES:
                conv.active = False
            s.flush()
        return conv, outbound

    def _transition(self, conv: AgentConversation, state: str, now: datetime) -> None:
        log.info("conversation_state_changed", conversation_id=conv.id, from_state=conv.state, to_state=state)
        conv.state = state
        if state == STATE_CONFIRMED:
            conv.confirmed_at = now
        elif state == STATE_CANCELLED:
            conv.cancelled_at = now
        elif state == STATE_ESCALATED:
            conv.escalated_at = now

    def _new_outbound(self, s, conv: AgentConversation, text: str, intent: str,
                      extra: dict | None, now: datetime) -> AgentMessage:
        msg = AgentMessage(
            conversation_id=conv.id,
            workspace_id=conv.workspace_id,
            direction="outbound",
            sender="agent",
            content=text,
            intent=intent,
            delivery_status="pending",
            extra=dict(extra or {}),
            created_at=now,
        )
        s.add(msg)
        conv.last_agent_message_at = now
        conv.last_interaction_at = now
        conv.message_count = (conv.message_count or 0) + 1
        conv.agent_message_count = (conv.agent_message_count or 0) + 1
        return msg

    def add_outbound(self, conversation_id: int, text: str, intent: str = "follow_up",
                     relance_number: int | None = None, now: datetime | None = None) -> AgentMessage:
        """Grava uma mensagem de saída `pending` (mensagem inicial ou relance)."""
        now = now or utcnow()
        extra = {"is_relance": relance_number is not None, "relance_number": relance_number or 0}
        with self.Session() as s, s.begin():
            conv = self._locked(s, conversation_id)
            msg = self._new_outbound(s, conv, text, intent=intent, extra=extra, now=now)
            if relance_number is not None:
                conv.relance_count = relance_number
                conv.last_relance_at = now
            s.flush()
        return msg

    # ---------- Status de entrega ----------
    def mark_sent(self, message_id: int, provider_message_id: str, sent_at: datetime,
                  response_time_ms: int | None = None) -> None:
        with self.Session() as s, s.begin():
            msg = s.get(AgentMessage, message_id)
            msg.provider_message_id = provider_message_id
            if msg.delivery_status == "pending":
                msg.delivery_status = "sent"
            if response_time_ms is not None:
                msg.extra = {**(msg.extra or {}), "response_time_ms": response_time_ms}
        log.info("outbound_marked_sent", message_id=message_id, provider_message_id=provider_message_id)

    def mark_failed(self, message_id: int, error: str) -> None:
        with self.Session() as s, s.begin():
            msg = s.get(AgentMessage, message_id)
            msg.delivery_status = "failed"
            msg.error_message = error[:2000]
        log.warning("outbound_marked_failed", message_id=message_id, error=error)

    def transition_delivery_status(self, provider_message_id: str, new_status: str,
                                   allowed_from: Iterable[str]) -> tuple[bool, str | None, bool]:
        """Compare-and-set do status de entrega pelo id do provedor.

        :return: (encontrada, status_final, alterada)
        """
        with self.Session() as s, s.begin():
            msg = s.execute(
                select(AgentMessage).where(
                    AgentMessage.provider_message_id == provider_message_id,
                    AgentMessage.direction == "outbound",
                ).with_for_update()
            ).scalar_one_or_none()
            if msg is None:
                return False, None, False
            if msg.delivery_status not in set(allowed_from):
                return True, msg.delivery_status, False
            msg.delivery_status = new_status
        return True, new_status, True

    # ---------- Relances e limpeza ----------
    def _relance_due(self, conv: AgentConversation, now: datetime) -> bool:
        intervals = self.settings.relance_intervals_minutes
        if not intervals:
            return False
        # Resposta do cliente só reinicia o prazo do nível atual
        last = conv.last_interaction_at or conv.created_at
        wait = intervals[min(conv.relance_count, len(intervals) - 1)]
        return now - last >= timedelta(minutes=wait)

    def list_needing_relance(self, now: datetime | None = None) -> list[AgentConversation]:
        now = now or utcnow()
        with self.Session() as s:
            rows = s.execute(
                select(AgentConversation).where(
                    AgentConversation.active.is_(True),
                    AgentConversation.state.not_in(tuple(TERMINAL_STATES)),
                    AgentConversation.relance_count < self.settings.relance_max_attempts,
                ).order_by(AgentConversation.id.asc())
            ).scalars().all()
        return [c for c in rows if self._relance_due(c, now)]

    def list_stale(self, now: datetime | None = None) -> list[AgentConversation]:
        """Ativas sem atividade além da janela, ou que já esgotaram as relances."""
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.settings.stale_after_hours)
        with self.Session() as s:
            return list(s.execute(
                select(AgentConversation).where(
                    AgentConversation.active.is_(True),
                    or_(
                        AgentConversation.last_interaction_at < cutoff,
                        AgentConversation.relance_count >= self.settings.relance_max_attempts,
                    ),
                )
            ).scalars().all())

    def deactivate(self, conversation_ids: Iterable[int]) -> int:
        ids = list(conversation_ids)
        if not ids:
            return 0
        with self.Session() as s, s.begin():
            res = s.execute(
                update(AgentConversation)
                .where(AgentConversation.id.in_(ids), AgentConversation.active.is_(True))
                .values(active=False)
            )
        return res.rowcount or 0

    def close(self, conversation_id: int, state: str = STATE_COMPLETED) -> AgentConversation | None:
        """Encerramento manual (admin)."""
        with self.Session() as s, s.begin():
            conv = s.get(AgentConversation, conversation_id)
            if conv is None:
                return None
            if state in STATES and state != conv.state:
                self._transition(conv, state, utcnow())
            conv.active = False
        return conv

    # ---------- Relatório ----------
    def stats(self, workspace_id: str | None = None) -> dict:
        with self.Session() as s:
            rows = s.execute(
                select(AgentConversation.state, func.count(), func.avg(AgentConversation.confidence_score))
                .where(AgentConversation.workspace_id == self._workspace(workspace_id))
                .group_by(AgentConversation.state)
            ).all()
        by_state = {state: count for state, count, _ in rows}
        total = sum(by_state.values())
        avg = (sum(float(a or 0) * c for _, c, a in rows) / total) if total else 0.0
        return {
            "total": total,
            "by_state": by_state,
            "conversion_rate": round(100 * by_state.get(STATE_CONFIRMED, 0) / total, 2) if total else 0.0,
            "cancellation_rate": round(100 * by_state.get(STATE_CANCELLED, 0) / total, 2) if total else 0.0,
            "avg_confidence_score": round(avg, 2),
        }


"""Despacho de mensagens de saída com atraso humano fora da thread da requisição."""
from __future__ import annotations
import contextvars
import time
from concurrent.futures import Future, ThreadPoolExecutor
from ...core.errors import GatewayError, NotConfiguredError
from ...core.pacing import PacingPolicy
from ...core.logging import get_logger

log = get_logger()

class OutboundDispatcher:
    """Envia mensagens `pending` já persistidas e registra sent/failed.

    `submit` devolve imediatamente um Future: o atraso e o envio rodam no
    executor, sem segurar sessão nem lock da conversa.
    """
    def __init__(self, store, gateway, pacing: PacingPolicy, max_workers: int = 4):
        self.store = store
        self.gateway = gateway
        self.pacing = pacing
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="outbound")

    def submit(self, message_id: int, address: str, text: str) -> Future:
        ctx = contextvars.copy_context()
        queued_at = time.monotonic()
        return self.executor.submit(ctx.run, self._delayed_send, message_id, address, text, queued_at)

    def _delayed_send(self, message_id: int, address: str, text: str, queued_at: float) -> bool:
        try:
            self.pacing.wait_human()
            return self.deliver(message_id, address, text, queued_at=queued_at)
        except Exception:
            log.exception("outbound_dispatch_failed", message_id=message_id, chat_id=address)
            return False

    def deliver(self, message_id: int, address: str, text: str, queued_at: float | None = None) -> bool:
        """Envia agora. Falha do gateway vira status `failed`, nunca exceção."""
        try:
            entrega = self.gateway.send(address, text)
        except (GatewayError, NotConfiguredError) as exc:
            self.store.mark_failed(message_id, str(exc))
            return False
        elapsed = int((time.monotonic() - queued_at) * 1000) if queued_at is not None else None
        self.store.mark_sent(message_id, entrega.provider_message_id, entrega.sent_at, response_time_ms=elapsed)
        log.info("outbound_sent", message_id=message_id, chat_id=address, provider_message_id=entrega.provider_message_id)
        return True

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


"""Jobs periódicos: relances de conversas silenciosas e limpeza de inativas."""
from __future__ import annotations
import threading
from kink import di
from ..core.pacing import PacingPolicy
from ..core.settings import Settings
from ..core.logging import get_logger
from ..domain.services.outbound_dispatcher import OutboundDispatcher
from ..ports.interfaces import ConversationPolicy, JobSummary
from ..repo.models import AgentConversation
from ..repo.store import ConversationStore

log = get_logger()

class RelanceJobs:
    """Corpos dos jobs de relance e limpeza.

    Cada job tem um lock não bloqueante: uma execução sobreposta do mesmo job
    retorna `skipped=True` sem fazer nada. Os dois jobs podem rodar ao mesmo tempo.
    """
    def __init__(self, store: ConversationStore | None = None, policy: ConversationPolicy | None = None,
                 dispatcher: OutboundDispatcher | None = None, pacing: PacingPolicy | None = None,
                 settings: Settings | None = None):
        self.store = store or di[ConversationStore]
        self.policy = policy or di[ConversationPolicy]
        self.dispatcher = dispatcher or di[OutboundDispatcher]
        self.pacing = pacing or di[PacingPolicy]
        self.settings = settings or di[Settings]
        self._relance_lock = threading.Lock()
        self._cleanup_lock = threading.Lock()

    @property
    def relance_running(self) -> bool:
        return self._relance_lock.locked()

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_lock.locked()

    # ---------- Relance ----------
    def send_relance(self, conv: AgentConversation) -> bool:
        """Grava e envia a próxima relance da conversa; o contador sobe mesmo se o envio falhar."""
        number = (conv.relance_count or 0) + 1
        history = self.store.history(conv.id, limit=self.settings.history_limit)
        text = self.policy.relance_message(conv, number, history)
        outbound = self.store.add_outbound(conv.id, text, intent="follow_up", relance_number=number)
        self.pacing.wait_human()
        ok = self.dispatcher.deliver(outbound.id, conv.chat_id, text)
        log.info("relance_sent" if ok else "relance_failed", conversation_id=conv.id, relance_number=number)
        return ok

    def run_relance(self) -> JobSummary:
        if not self._relance_lock.acquire(blocking=False):
            log.info("relance_batch_skipped", reason="busy")
            return JobSummary(job="relance", skipped=True)
        try:
            candidates = self.store.list_needing_relance()
            outcomes = self.pacing.run_sequential(candidates, self.send_relance)
            ok = sum(1 for _, success in outcomes if success)
            summary = JobSummary(job="relance", checked=len(candidates), succeeded=ok, failed=len(outcomes) - ok)
            log.info("relance_batch_done", checked=summary.checked, succeeded=summary.succeeded, failed=summary.failed)
            return summary
        finally:
            self._relance_lock.release()

    def relance_one(self, conversation_id: int) -> JobSummary:
        """Relance manual de uma conversa (admin), respeitando estado e limite de tentativas."""
        conv = self.store.get(conversation_id)
        if conv is None or not conv.active or conv.is_terminal \
                or conv.relance_count >= self.settings.relance_max_attempts:
            return JobSummary(job="relance_one")
        ok = self.send_relance(conv)
        return JobSummary(job="relance_one", checked=1, succeeded=int(ok), failed=int(not ok))

    # ---------- Limpeza ----------
    def run_cleanup(self) -> JobSummary:
        if not self._cleanup_lock.acquire(blocking=False):
            log.info("cleanup_skipped", reason="busy")
            return JobSummary(job="cleanup", skipped=True)
        try:
            stale = self.store.list_stale()
            deactivated = self.store.deactivate(c.id for c in stale)
            log.info("cleanup_done", checked=len(stale), deactivated=deactivated)
            return JobSummary(job="cleanup", checked=len(stale), deactivated=deactivated)
        finally:
            self._cleanup_lock.release()

    # Disparos manuais: mesmos corpos, síncronos
    def trigger_relance(self) -> JobSummary:
        return self.run_relance()

    def trigger_cleanup(self) -> JobSummary:
        return self.run_cleanup()

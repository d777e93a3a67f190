
"""Reconciliação de callbacks de status de entrega do provedor."""
from __future__ import annotations
from kink import di
from ...connectors.whatsapp.green_api_adapter import map_delivery_status
from ...core.logging import get_logger
from ...ports.interfaces import DeliveryStatusResult
from ...repo.store import ConversationStore

log = get_logger()

# Ordem de avanço; `failed` fica fora da escala
STATUS_RANK = {"pending": 0, "sent": 1, "delivered": 2, "read": 3}

def allowed_predecessors(new_status: str) -> set[str]:
    """Status a partir dos quais `new_status` é uma transição válida."""
    if new_status == "failed":
        return {"pending", "sent", "delivered"}
    rank = STATUS_RANK[new_status]
    return {s for s, r in STATUS_RANK.items() if r < rank}

class DeliveryStatusTracker:
    def __init__(self, store: ConversationStore | None = None):
        self.store = store or di[ConversationStore]

    def handle_status_update(self, provider_message_id: str | None, provider_status: str | None) -> DeliveryStatusResult:
        status = map_delivery_status(provider_status)
        if not provider_message_id or status is None:
            log.debug("delivery_status_ignored", provider_message_id=provider_message_id, provider_status=provider_status)
            return DeliveryStatusResult(processed=False)
        try:
            found, current, changed = self.store.transition_delivery_status(
                str(provider_message_id), status, allowed_predecessors(status)
            )
        except Exception:
            log.exception("delivery_status_failed", provider_message_id=provider_message_id)
            return DeliveryStatusResult(processed=False)
        if not found:
            log.debug("delivery_status_unknown_message", provider_message_id=provider_message_id)
            return DeliveryStatusResult(processed=False)
        if changed:
            log.info("delivery_status_updated", provider_message_id=provider_message_id, status=current)
        return DeliveryStatusResult(processed=True, status=current, changed=changed)

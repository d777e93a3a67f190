
"""API Flask: webhook da Green API, status de entrega e administração das conversas."""
from __future__ import annotations
from flask import Flask, request, jsonify
from kink import di
from pydantic import ValidationError
from ..core.di import bootstrap_di
from ..core.logging import set_trace_id, get_logger
from ..core.settings import Settings
from ..domain.services.conversation_engine import ConversationEngine
from ..domain.services.delivery_status import DeliveryStatusTracker
from ..domain.services.ingestion import WebhookIngestion
from ..ports.interfaces import PedidoDTO
from ..repo.models import TERMINAL_STATES
from ..repo.store import ConversationStore, to_dict
from ..tasks.relance_jobs import RelanceJobs
from ..tasks.scheduler import RelanceScheduler

log = get_logger()

STATUS_WEBHOOK_TYPE = "outgoingMessageStatus"

def _body() -> dict:
    body = request.get_json(force=True, silent=True)
    return body if isinstance(body, dict) else {}

def _flag(value: str | None) -> bool | None:
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes")

def create_app(settings: Settings | None = None, **overrides) -> Flask:
    """Cria a aplicação e o container de DI.

    :param overrides: repassados a `bootstrap_di` (policy, gateway, pacing, create_schema).
    """
    bootstrap_di(settings, **overrides)
    app = Flask(__name__)
    s = di[Settings]

    @app.get("/healthz")
    def healthz():
        """Health check básico."""
        return {"ok": True}

    # ---------- Webhooks (sempre 200 para o provedor) ----------
    @app.post("/webhook/green-api")
    def webhook_green_api():
        """Recebe eventos da Green API: mensagens recebidas e status de envio."""
        set_trace_id(request.headers.get("X-Trace-Id"))
        raw = request.get_json(force=True, silent=True)
        if isinstance(raw, dict) and raw.get("typeWebhook") == STATUS_WEBHOOK_TYPE:
            res = di[DeliveryStatusTracker].handle_status_update(raw.get("idMessage"), raw.get("status"))
            return jsonify({"success": True, "status_update": res.model_dump()})
        result = di[WebhookIngestion].handle(raw)
        if not result.success:
            log.error("webhook_failed", error=result.error)
        return jsonify({"success": True, "result": result.model_dump()})

    @app.post("/webhook/status")
    def webhook_status():
        set_trace_id(request.headers.get("X-Trace-Id"))
        body = _body()
        res = di[DeliveryStatusTracker].handle_status_update(body.get("idMessage"), body.get("status"))
        return jsonify({"success": True, "status_update": res.model_dump()})

    # ---------- Conversas ----------
    @app.post("/conversations/start")
    def start_conversation():
        """Semeia a conversa de um pedido e envia a mensagem inicial.

        Corpo esperado:
        { "order_id": "A-1", "client_phone": "690000001", "client_name": "Awa", "product_name": "...", "product_price": 15000 }
        """
        set_trace_id(request.headers.get("X-Trace-Id"))
        try:
            order = PedidoDTO.model_validate(_body())
        except ValidationError as exc:
            return {"error": "invalid order", "detail": str(exc)}, 400
        turn = di[ConversationEngine].start_for_order(order)
        if not turn.processed:
            return {"error": turn.reason}, 422
        return jsonify(turn.model_dump())

    @app.get("/conversations")
    def list_conversations():
        args = request.args
        rows = di[ConversationStore].list_conversations(
            workspace_id=args.get("workspace_id"),
            state=args.get("state"),
            active=_flag(args.get("active")),
            limit=min(args.get("limit", 50, type=int), 200),
            offset=args.get("offset", 0, type=int),
        )
        return jsonify({"conversations": [to_dict(r) for r in rows], "count": len(rows)})

    @app.get("/conversations/<int:conversation_id>")
    def get_conversation(conversation_id: int):
        store = di[ConversationStore]
        conv = store.get(conversation_id)
        if conv is None:
            return {"error": "not found"}, 404
        return jsonify(to_dict(conv) | {"messages": [to_dict(m) for m in store.messages(conversation_id)]})

    @app.post("/conversations/<int:conversation_id>/close")
    def close_conversation(conversation_id: int):
        """Encerramento manual; `state` opcional entre os estados terminais."""
        state = _body().get("state") or "completed"
        if state not in TERMINAL_STATES:
            return {"error": f"invalid state {state}"}, 400
        conv = di[ConversationStore].close(conversation_id, state)
        if conv is None:
            return {"error": "not found"}, 404
        log.info("conversation_closed", conversation_id=conversation_id, state=state)
        return jsonify(to_dict(conv))

    @app.post("/conversations/<int:conversation_id>/relance")
    def relance_conversation(conversation_id: int):
        set_trace_id(request.headers.get("X-Trace-Id"))
        if di[ConversationStore].get(conversation_id) is None:
            return {"error": "not found"}, 404
        return jsonify(di[RelanceJobs].relance_one(conversation_id).model_dump())

    @app.get("/stats")
    def stats():
        return jsonify(di[ConversationStore].stats(request.args.get("workspace_id")))

    # ---------- Jobs ----------
    @app.post("/relance/run")
    def relance_run():
        set_trace_id(request.headers.get("X-Trace-Id"))
        return jsonify(di[RelanceJobs].trigger_relance().model_dump())

    @app.post("/cleanup/stale")
    def cleanup_stale():
        set_trace_id(request.headers.get("X-Trace-Id"))
        return jsonify(di[RelanceJobs].trigger_cleanup().model_dump())

    @app.get("/jobs/status")
    def jobs_status():
        return jsonify(di[RelanceScheduler].status())

    if s.scheduler_enabled:
        di[RelanceScheduler].start()
    return app

def main() -> None:
    app = create_app()
    s = di[Settings]
    app.run(host=s.host, port=s.port, debug=s.flask_debug)

if __name__ == "__main__":
    main()

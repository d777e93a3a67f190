
"""Adapter da Green API (WhatsApp) para envio, parsing de webhook e status."""
from __future__ import annotations
import re
import time
from datetime import datetime, timezone
from uuid import uuid4
import httpx
from kink import di
from ...core.settings import Settings
from ...core.errors import GatewayError, NotConfiguredError, ParseError
from ...core.guardrails import sanitize_text
from ...core.logging import get_logger
from ...ports.interfaces import MensagemEntradaDTO, EntregaDTO

log = get_logger()

PERSONAL_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"
INCOMING_TYPE = "incomingMessageReceived"
MIN_DIGITS = 10
MAX_DIGITS = 15

DELIVERY_STATUS_MAP = {
    "sent": "sent",
    "delivered": "delivered",
    "read": "read",
    "failed": "failed",
    "error": "failed",
    "noaccount": "failed",
    "notingroup": "failed",
    "yellowcard": "failed",
}

def normalize_address(raw: str | None, country_code: str = "237", local_length: int = 9,
                      local_prefixes: str = "6") -> str | None:
    """Normaliza telefone/chatId para `<dígitos>@c.us`.

    Retorna None quando o identificador não é utilizável (grupo, curto ou
    longo demais). Nunca troca por um número substituto.
    """
    if not raw or not isinstance(raw, str):
        return None
    if GROUP_SUFFIX in raw:
        return None
    digits = re.sub(r"\D", "", raw.replace(PERSONAL_SUFFIX, ""))
    if len(digits) == local_length and local_prefixes and digits[0] in local_prefixes:
        digits = country_code + digits
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        return None
    return f"{digits}{PERSONAL_SUFFIX}"

def map_delivery_status(provider_status: str | None) -> str | None:
    """Vocabulário do provedor -> status canônico (sent|delivered|read|failed)."""
    if not provider_status or not isinstance(provider_status, str):
        return None
    return DELIVERY_STATUS_MAP.get(provider_status.strip().lower())

class GreenApiAdapter:
    """Adapter para a Green API."""
    def __init__(self, settings: Settings | None = None, client: httpx.Client | None = None):
        self.s = settings or di[Settings]
        self._client = client
        self._config: dict | None = None

    # --- Config ---
    def configure(self) -> bool:
        """Carrega credenciais; retorna False se ainda não estão disponíveis."""
        if not (self.s.green_api_id_instance and self.s.green_api_token_instance):
            log.warning("gateway_not_configured")
            return False
        self._config = {
            "id_instance": self.s.green_api_id_instance,
            "token": self.s.green_api_token_instance,
            "api_url": self.s.green_api_base_url.rstrip("/"),
        }
        log.info("gateway_configured", api_url=self._config["api_url"])
        return True

    @property
    def configured(self) -> bool:
        return self._config is not None

    def normalize_address(self, raw: str | None) -> str | None:
        return normalize_address(
            raw,
            country_code=self.s.default_country_code,
            local_length=self.s.local_number_length,
            local_prefixes=self.s.local_number_prefixes,
        )

    # --- Ingress helpers ---
    def parse_incoming(self, raw: dict) -> MensagemEntradaDTO:
        """Extrai o evento canônico do webhook; ParseError para todo descarte."""
        if not isinstance(raw, dict):
            raise ParseError("invalid_payload")
        body = raw.get("payload") if isinstance(raw.get("payload"), dict) else raw
        webhook_type = raw.get("typeWebhook") or body.get("typeWebhook")
        if webhook_type and INCOMING_TYPE not in webhook_type:
            raise ParseError("not_incoming_message")

        message_data = body.get("messageData") or {}
        texto = (
            (message_data.get("textMessageData") or {}).get("textMessage")
            or (message_data.get("extendedTextMessageData") or {}).get("text")
            or body.get("textMessage")
            or body.get("content")
            or ""
        )
        texto = sanitize_text(texto if isinstance(texto, str) else "")
        if not texto:
            raise ParseError("empty_text")

        sender = body.get("senderData") or {}
        chat_id = sender.get("chatId")
        if not chat_id:
            raise ParseError("missing_chat_id")
        provider_id = body.get("idMessage") or f"msg_{int(time.time() * 1000)}_{uuid4().hex[:8]}"
        sender_name = sender.get("senderName") or sender.get("chatName") or "Client"
        raw_sender = sender.get("sender") or chat_id

        if body.get("fromMe"):
            raise ParseError("outbound_echo")
        if GROUP_SUFFIX in chat_id:
            raise ParseError("group_chat")

        return MensagemEntradaDTO(
            chat_id=chat_id,
            provider_message_id=str(provider_id),
            texto=texto,
            sender_name=sender_name,
            sender_phone=raw_sender.replace(PERSONAL_SUFFIX, "").replace(GROUP_SUFFIX, ""),
            timestamp=body.get("timestamp"),
        )

    # --- Egress ---
    def _http(self) -> httpx.Client:
        return self._client or httpx.Client(timeout=self.s.send_timeout_s)

    def send(self, address: str, text: str) -> EntregaDTO:
        """Envia mensagem de texto via sendMessage."""
        if not self.configured and not self.configure():
            raise NotConfiguredError("credenciais da Green API ausentes")
        cfg = self._config
        url = f"{cfg['api_url']}/waInstance{cfg['id_instance']}/sendMessage/{cfg['token']}"
        payload = {"chatId": address, "message": text}
        log.info("gateway_send", chat_id=address, length=len(text))
        try:
            if self._client is not None:
                r = self._client.post(url, json=payload, timeout=self.s.send_timeout_s)
            else:
                with self._http() as cli:
                    r = cli.post(url, json=payload)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"timeout após {self.s.send_timeout_s}s") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"erro de transporte: {exc}") from exc

        j = {}
        if "application/json" in r.headers.get("content-type", ""):
            try:
                j = r.json()
            except ValueError:
                j = {}
        if r.status_code // 100 != 2:
            detail = j.get("error") or j.get("message") if isinstance(j, dict) else None
            raise GatewayError(detail or f"HTTP {r.status_code}", status_code=r.status_code)
        provider_id = j.get("idMessage") if isinstance(j, dict) else None
        if not provider_id:
            raise GatewayError("resposta sem idMessage", status_code=r.status_code)
        ts = j.get("timestamp")
        sent_at = datetime.fromtimestamp(ts, tz=timezone.utc) if isinstance(ts, (int, float)) else datetime.now(timezone.utc)
        return EntregaDTO(provider_message_id=str(provider_id), sent_at=sent_at.replace(tzinfo=None))

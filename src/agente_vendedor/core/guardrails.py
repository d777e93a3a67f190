
"""Guardrails de texto: entrada do cliente e resposta gerada."""
import re

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
MAX_REPLY_CHARS = 4000

def sanitize_text(text: str) -> str:
    """Remove caracteres de controle e colapsa espaços da mensagem recebida."""
    text = CONTROL_CHARS.sub("", text or "")
    return " ".join(text.split())

def clip_reply(text: str | None, limit: int = MAX_REPLY_CHARS) -> str | None:
    """Resposta gerada pronta para envio, ou None se vazia.

    Quebras de linha são mantidas (WhatsApp as exibe); só as pontas são aparadas.
    """
    if not text:
        return None
    text = CONTROL_CHARS.sub("", text).strip()
    return text[:limit] or None

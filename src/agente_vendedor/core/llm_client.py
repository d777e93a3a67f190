
"""Cliente HTTP para LiteLLM, com validação Pydantic da saída JSON."""
from typing import Type
import httpx
from pydantic import BaseModel
from kink import di
from .settings import Settings
from .errors import NotConfiguredError
from .logging import get_logger

log = get_logger()

class LLMClient:
    """Cliente do gateway LiteLLM (API compatível com OpenAI).
    Suporta: complete_json() com modelo de fallback.
    """
    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None):
        self.settings = settings or di[Settings]
        self.transport = transport

    def _client(self) -> httpx.Client:
        if not self.settings.litellm_base_url:
            raise NotConfiguredError("litellm_base_url não configurada")
        return httpx.Client(base_url=self.settings.litellm_base_url, timeout=self.settings.litellm_timeout_s,
                            transport=self.transport)

    def _payload(self, model: str, system: str, user: str) -> dict:
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.settings.litellm_temperature,
            "max_tokens": self.settings.litellm_max_tokens,
            "response_format": {"type": "json_object"},
        }

    def _post(self, payload: dict) -> str:
        with self._client() as cli:
            r = cli.post("/chat/completions", json=payload)
            r.raise_for_status()
            data = r.json()
        return data["choices"][0]["message"]["content"] or ""

    def complete_json(self, system: str, user: str, schema: Type[BaseModel]) -> BaseModel:
        """Pede JSON ao modelo primário; em falha, tenta o modelo de fallback."""
        payload = self._payload(self.settings.litellm_model_primary, system, user)
        try:
            return schema.model_validate_json(self._post(payload))
        except NotConfiguredError:
            raise
        except Exception:
            log.warning("llm_primary_failed", model=payload["model"], exc_info=True)
            payload["model"] = self.settings.litellm_model_fallback
            return schema.model_validate_json(self._post(payload))

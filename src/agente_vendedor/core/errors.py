
"""Taxonomia de erros do agente."""
from __future__ import annotations


class AgenteError(Exception):
    """Erro base do agente vendedor."""


class NotConfiguredError(AgenteError):
    """Gateway usado antes de credenciais/configuração disponíveis."""


class GatewayError(AgenteError):
    """Falha de envio: rede, timeout ou resposta de erro do provedor."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(AgenteError):
    """Payload de webhook que não gera processamento (curto-circuito silencioso)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConflictError(AgenteError):
    """Corrida na criação de conversa (violação do índice único)."""

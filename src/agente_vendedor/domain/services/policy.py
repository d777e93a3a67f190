
"""Política de conversa: ponte para o colaborador opaco de NLU/geração.

A orquestração (engine, relances) só conhece o protocolo ConversationPolicy;
esta implementação delega a classificação e a redação ao LLM via LiteLLM.
"""
from __future__ import annotations
from typing import Any
from kink import di
from ...core.guardrails import clip_reply
from ...core.llm_client import LLMClient
from ...core.prompting import PromptBuilder
from ...ports.interfaces import PolicyDecision
from ...repo.models import STATES

MENSAGEM_INICIAL = (
    "Bonjour{nome} 👋 Nous avons bien reçu votre commande{produto}. "
    "Le livreur est déjà dans votre zone aujourd'hui. On vous livre dans l'après-midi ?"
)

RELANCES_PADRAO = {
    1: "Bonjour 👋 Je voulais juste m'assurer que vous avez bien reçu mon message. "
       "On peut toujours vous livrer aujourd'hui si ça vous arrange ?",
    2: "Coucou ! Notre livreur passe dans votre quartier cet après-midi. "
       "C'est le dernier passage de la journée, vous confirmez ?",
    3: "Bonjour ! Je voulais savoir si vous êtes toujours intéressé(e) par votre commande. "
       "On peut organiser la livraison demain si vous préférez 😊",
}

def first_name(conversation: Any) -> str:
    name = (getattr(conversation, "client_name", "") or "").strip()
    return name.split()[0] if name else "cher client"

def conversation_view(conversation: Any) -> dict:
    return {
        "product_name": conversation.product_name,
        "product_price": conversation.product_price,
        "state": conversation.state,
        "confidence_score": conversation.confidence_score,
        "relance_count": conversation.relance_count,
    }

class LLMConversationPolicy:
    """Classifica e redige respostas com o LLM; relances usam modelos fixos."""
    def __init__(self, llm: LLMClient | None = None, builder: PromptBuilder | None = None,
                 relances: dict[int, str] | None = None):
        self.llm = llm or di[LLMClient]
        self.builder = builder or di[PromptBuilder]
        self.relances = relances or RELANCES_PADRAO

    def classify_and_respond(self, conversation: Any, text: str, history: list[dict]) -> PolicyDecision:
        system = self.builder.sales_system(conversa=conversation_view(conversation), estados=list(STATES))
        user = self.builder.sales_user(mensagem=text, historico=history, primeiro_nome=first_name(conversation))
        decision = self.llm.complete_json(system, user, PolicyDecision)
        decision.reply_text = clip_reply(decision.reply_text)
        return decision

    def relance_message(self, conversation: Any, relance_number: int, history: list[dict]) -> str:
        return self.relances.get(relance_number) or self.relances[min(self.relances)]

    def initial_message(self, conversation: Any) -> str:
        nome = f" {first_name(conversation)}" if (conversation.client_name or "").strip() else ""
        produto = f" de {conversation.product_name}" if conversation.product_name else ""
        return MENSAGEM_INICIAL.format(nome=nome, produto=produto)

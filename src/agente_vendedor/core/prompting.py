
"""PromptBuilder com Jinja2 para o agente vendedor (clientes francófonos).

- Prompt de sistema: tonalidade, regras, produto, estado da conversa e schema de saída.
- Prompt de usuário: mensagem atual + histórico recente.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List
from jinja2 import Environment, BaseLoader, StrictUndefined

# -------- Tonalidades --------
TONALIDADES = {
    "friendly": "Tu es chaleureux, proche et utilise un ton amical comme un ami qui conseille.",
    "professional": "Tu es professionnel mais accessible, tu inspires confiance.",
    "casual": "Tu es décontracté, naturel et spontané.",
    "formal": "Tu es formel et respectueux, tu vouvoies le client.",
}

# -------- Regras globais --------
REGRAS_PADRAO = (
    "1. Réponds toujours aux questions du client de manière complète.\n"
    "2. Rassure le client sur ses inquiétudes.\n"
    "3. Ramène la conversation vers la livraison aujourd'hui.\n"
    "4. Termine chaque message par une question ou une proposition concrète.\n"
    "5. Messages courts (3-4 phrases max), 1-2 emojis au plus.\n"
)

@dataclass
class PromptBuilder:
    loja_nome: str = "la boutique"
    tonalidade_chave: str = "friendly"
    regras_extra: str = ""
    env: Environment = field(default_factory=lambda: Environment(
        loader=BaseLoader(),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    ))

    def _tonalidade(self) -> str:
        return TONALIDADES.get(self.tonalidade_chave, TONALIDADES["friendly"])

    # ---------- Sistema ----------
    def sales_system(self, *, conversa: Dict[str, Any], estados: List[str]) -> str:
        """Prompt de sistema do vendedor com estado atual e schema JSON esperado."""
        template = self.env.from_string("""
        Tu es un vendeur expérimenté et persuasif pour {{ loja_nome }}.
        {{ tonalidade }}

        OBJECTIF PRINCIPAL: confirmer la livraison aujourd'hui.

        RÈGLES:
        {{ regras }}
        {% if regras_extra %}
        {{ regras_extra }}
        {% endif %}

        PRODUIT:
        - Nom: {{ conversa.product_name or 'Non spécifié' }}
        - Prix: {{ conversa.product_price or 'Non spécifié' }} FCFA

        ÉTAT DE LA CONVERSATION:
        - État: {{ conversa.state }}
        - Score de confiance: {{ conversa.confidence_score }}%
        - Relances envoyées: {{ conversa.relance_count }}

        Analyse le message du client et réponds UNIQUEMENT en JSON:
        {"intent": "confirmation|negotiation|question|objection|cancellation|greeting|thanks|unclear|unknown",
         "sentiment": "positive|neutral|negative",
         "confidence_delta": <entier entre -50 et 40>,
         "reply_text": "message à envoyer au client, ou null pour ne pas répondre",
         "next_state": "{{ estados | join('|') }}"}
        Si le client se plaint avec insistance, utilise "escalated" et reply_text null.
        """)
        return template.render(
            loja_nome=self.loja_nome,
            tonalidade=self._tonalidade(),
            regras=REGRAS_PADRAO,
            regras_extra=self.regras_extra,
            conversa=conversa,
            estados=estados,
        )

    # ---------- Usuário ----------
    def sales_user(self, *, mensagem: str, historico: List[Dict[str, Any]], primeiro_nome: str) -> str:
        template = self.env.from_string("""
        Message client: "{{ mensagem }}"
        Prénom client: {{ primeiro_nome }}

        Historique récent:
        {% for m in historico %}
        {{ 'Client' if m.sender == 'client' else 'Agent' }}: {{ m.content }}
        {% else %}
        (aucun)
        {% endfor %}
        """)
        return template.render(mensagem=mensagem, historico=historico, primeiro_nome=primeiro_nome)

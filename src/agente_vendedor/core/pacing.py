
"""Política de ritmo de envio: atraso "humano" e pausa entre tarefas sequenciais.

O ritmo é parâmetro de primeira classe (injetável e testável), não um sleep
espalhado pelo código. `sleep` e `rng` podem ser substituídos nos testes.
"""
from __future__ import annotations
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Tuple
from .logging import get_logger

log = get_logger()

@dataclass
class PacingPolicy:
    human_delay_min_s: float = 2.0
    human_delay_max_s: float = 5.0
    inter_task_s: float = 10.0
    sleep: Callable[[float], None] = time.sleep
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def from_settings(cls, settings) -> "PacingPolicy":
        return cls(
            human_delay_min_s=settings.human_delay_min_s,
            human_delay_max_s=settings.human_delay_max_s,
            inter_task_s=settings.relance_pause_s,
        )

    def human_delay(self) -> float:
        """Sorteia o atraso antes de um envio (segundos)."""
        low, high = sorted((self.human_delay_min_s, self.human_delay_max_s))
        return self.rng.uniform(low, high)

    def wait_human(self) -> float:
        delay = self.human_delay()
        if delay > 0:
            self.sleep(delay)
        return delay

    def wait_between(self) -> None:
        if self.inter_task_s > 0:
            self.sleep(self.inter_task_s)

    def run_sequential(self, items: Iterable[Any], fn: Callable[[Any], bool]) -> List[Tuple[Any, bool]]:
        """Executa `fn` item a item, com pausa fixa entre itens.

        A falha de um item (exceção ou retorno falso) não interrompe o lote.
        :return: lista de (item, sucesso).
        """
        outcomes: List[Tuple[Any, bool]] = []
        for idx, item in enumerate(items):
            if idx > 0:
                self.wait_between()
            try:
                ok = bool(fn(item))
            except Exception:
                log.exception("paced_task_failed", index=idx)
                ok = False
            outcomes.append((item, ok))
        return outcomes

"""Evaluación del estado de alerta de una conversación."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from centinela.models.conversation import ConversationState, ensure_utc

from .policy import next_level

EvaluationReason = Literal["no_external_message", "staff_replied", "unanswered"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Evaluation:
    """Resultado de evaluar una conversación en un instante dado."""

    conversation_id: str
    previous_level: int
    new_level: int
    should_dispatch: bool
    reason: EvaluationReason
    elapsed_minutes: int | None = None

    @property
    def level_changed(self) -> bool:
        return self.new_level != self.previous_level


def elapsed_whole_minutes(since: datetime, now: datetime) -> int:
    """Minutos completos transcurridos, truncados hacia abajo."""
    return int((ensure_utc(now) - ensure_utc(since)).total_seconds() // 60)


class ConversationStateEvaluator:
    """Aplica la política de escalamiento sin efectos secundarios.

    Persistir ``new_level`` y despachar la alerta es responsabilidad de quien
    llama; evaluar dos veces el mismo estado produce el mismo resultado.
    """

    def __init__(
        self,
        thresholds: Sequence[int],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._thresholds = tuple(thresholds)
        self._clock = clock

    @property
    def thresholds(self) -> tuple[int, ...]:
        return self._thresholds

    def evaluate(self, state: ConversationState, now: datetime | None = None) -> Evaluation:
        previous = state.alert_level
        if state.last_external_message is None:
            return Evaluation(
                conversation_id=state.conversation_id,
                previous_level=previous,
                new_level=0,
                should_dispatch=False,
                reason="no_external_message",
            )
        if state.staff_replied:
            return Evaluation(
                conversation_id=state.conversation_id,
                previous_level=previous,
                new_level=0,
                should_dispatch=False,
                reason="staff_replied",
            )

        elapsed = elapsed_whole_minutes(
            state.last_external_message.occurred_at, now or self._clock()
        )
        level = next_level(elapsed, self._thresholds)
        return Evaluation(
            conversation_id=state.conversation_id,
            previous_level=previous,
            new_level=level,
            should_dispatch=level > 0 and level != previous,
            reason="unanswered",
            elapsed_minutes=elapsed,
        )

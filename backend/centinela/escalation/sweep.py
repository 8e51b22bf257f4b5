"""Barrido periódico de conversaciones y despacho de alertas."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from centinela.core.logging import get_logger
from centinela.models.conversation import ConversationPatch, ConversationState
from centinela.services.locks import KeyedLocks
from centinela.services.store import ConversationStore, StoreError
from centinela.services.wecom import Dispatcher

from .alerts import render_alert, resolve_recipients
from .evaluator import ConversationStateEvaluator, Evaluation

logger = get_logger("centinela.sweep")


@dataclass(slots=True)
class SweepOutcome:
    """Lo que ocurrió con una conversación durante el barrido."""

    evaluation: Evaluation
    dispatched: bool | None = None


@dataclass(slots=True)
class SweepSummary:
    """Conteos de un ciclo de barrido."""

    started_at: datetime
    checked: int = 0
    no_external_message: int = 0
    staff_replied: int = 0
    need_alert: int = 0
    level_changes: int = 0
    dispatched: int = 0
    dispatch_failures: int = 0
    failed: int = 0
    aborted: bool = False
    failed_ids: list[str] = field(default_factory=list)

    @property
    def normal(self) -> int:
        return (
            self.checked
            - self.no_external_message
            - self.staff_replied
            - self.need_alert
            - self.failed
        )

    def record(self, outcome: SweepOutcome) -> None:
        evaluation = outcome.evaluation
        self.checked += 1
        if evaluation.reason == "no_external_message":
            self.no_external_message += 1
        elif evaluation.reason == "staff_replied":
            self.staff_replied += 1
        elif evaluation.new_level > 0:
            self.need_alert += 1
        if evaluation.level_changed:
            self.level_changes += 1
        if outcome.dispatched is True:
            self.dispatched += 1
        elif outcome.dispatched is False:
            self.dispatch_failures += 1

    def record_failure(self, conversation_id: str) -> None:
        self.checked += 1
        self.failed += 1
        self.failed_ids.append(conversation_id)

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["normal"] = self.normal
        return payload


class SweepCoordinator:
    """Recorre todas las conversaciones y recalcula su nivel de alerta.

    Cada conversación se evalúa bajo su candado, releyendo el registro dentro
    de él, de modo que un reinicio escrito por el webhook nunca se pisa con un
    estado leído antes. El despacho sólo ocurre cuando el nivel cambia y ya
    quedó persistido.
    """

    def __init__(
        self,
        store: ConversationStore,
        evaluator: ConversationStateEvaluator,
        dispatcher: Dispatcher,
        locks: KeyedLocks,
        *,
        additional_receivers: Iterable[str] = (),
        preview_chars: int = 50,
        concurrency: int = 8,
        item_timeout_seconds: float = 30.0,
    ) -> None:
        self._store = store
        self._evaluator = evaluator
        self._dispatcher = dispatcher
        self._locks = locks
        self._additional_receivers = tuple(additional_receivers)
        self._preview_chars = preview_chars
        self._concurrency = concurrency
        self._item_timeout = item_timeout_seconds

    async def run_once(self, now: datetime | None = None) -> SweepSummary:
        """Ejecuta un ciclo completo; nunca propaga errores de una conversación."""
        started = now or datetime.now().astimezone()
        summary = SweepSummary(started_at=started)
        try:
            states = await self._store.list_all()
        except StoreError as exc:
            summary.aborted = True
            logger.error("sweep.list_failed", extra={"error": str(exc)})
            return summary

        semaphore = asyncio.Semaphore(self._concurrency)

        async def guarded(conversation_id: str) -> None:
            async with semaphore:
                await self._process(conversation_id, summary, now)

        await asyncio.gather(*(guarded(state.conversation_id) for state in states))

        logger.info("sweep.completed", extra=summary.as_dict())
        if summary.need_alert:
            logger.warning(
                "sweep.alerts_pending",
                extra={"need_alert": summary.need_alert, "dispatched": summary.dispatched},
            )
        return summary

    async def _process(
        self, conversation_id: str, summary: SweepSummary, now: datetime | None
    ) -> None:
        try:
            outcome = await asyncio.wait_for(
                self.evaluate_conversation(conversation_id, now),
                timeout=self._item_timeout,
            )
        except asyncio.TimeoutError:
            summary.record_failure(conversation_id)
            logger.error(
                "sweep.conversation_timeout",
                extra={"conversation_id": conversation_id, "timeout_seconds": self._item_timeout},
            )
            return
        except StoreError as exc:
            summary.record_failure(conversation_id)
            logger.error(
                "sweep.persistence_unavailable",
                extra={"conversation_id": conversation_id, "error": str(exc)},
            )
            return
        except Exception:
            summary.record_failure(conversation_id)
            logger.exception("sweep.conversation_failed", extra={"conversation_id": conversation_id})
            return

        if outcome is not None:
            summary.record(outcome)

    async def evaluate_conversation(
        self, conversation_id: str, now: datetime | None = None
    ) -> SweepOutcome | None:
        """Evalúa, persiste y, si el nivel cambió, despacha la alerta de una conversación."""
        async with self._locks.hold(conversation_id):
            state = await self._store.get(conversation_id)
            if state is None:
                return None
            evaluation = self._evaluator.evaluate(state, now)
            if evaluation.level_changed:
                state = await self._store.upsert(
                    conversation_id, ConversationPatch(alert_level=evaluation.new_level)
                )
                logger.info(
                    "sweep.level_changed",
                    extra={
                        "conversation_id": conversation_id,
                        "previous_level": evaluation.previous_level,
                        "new_level": evaluation.new_level,
                        "elapsed_minutes": evaluation.elapsed_minutes,
                    },
                )

        outcome = SweepOutcome(evaluation=evaluation)
        if evaluation.should_dispatch:
            outcome.dispatched = await self._dispatch(state, evaluation)
        return outcome

    async def _dispatch(self, state: ConversationState, evaluation: Evaluation) -> bool:
        text = render_alert(
            state, evaluation.elapsed_minutes or 0, preview_chars=self._preview_chars
        )
        recipients = resolve_recipients(state.owner, self._additional_receivers)
        delivered = await self._dispatcher.send(state.conversation_id, text, recipients)
        if not delivered:
            logger.error(
                "sweep.dispatch_failed",
                extra={
                    "conversation_id": state.conversation_id,
                    "level": evaluation.new_level,
                    "recipients": recipients,
                },
            )
        return delivered

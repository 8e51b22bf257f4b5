"""Construcción de los colaboradores de larga vida de la aplicación."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from centinela.channels.wecom.roles import RoleClassifier
from centinela.channels.wecom.service import CallbackIngress
from centinela.core.config import Settings
from centinela.core.crypto import AES_BLOCK_SIZE, PayloadDecryptor
from centinela.core.logging import get_logger
from centinela.escalation.evaluator import ConversationStateEvaluator, utcnow
from centinela.escalation.scheduler import SweepScheduler
from centinela.escalation.sweep import SweepCoordinator
from centinela.services.locks import KeyedLocks
from centinela.services.stats import CallbackStats
from centinela.services.store import ApiConversationStore, ConversationStore, MemoryConversationStore
from centinela.services.sync import GroupSyncService
from centinela.services.wecom import Dispatcher, WeComClient, WeComDispatcher

logger = get_logger("centinela")


@dataclass(slots=True)
class Container:
    settings: Settings
    store: ConversationStore
    wecom_client: WeComClient
    dispatcher: Dispatcher
    locks: KeyedLocks
    stats: CallbackStats
    classifier: RoleClassifier
    evaluator: ConversationStateEvaluator
    sync: GroupSyncService
    ingress: CallbackIngress
    coordinator: SweepCoordinator
    scheduler: SweepScheduler

    async def aclose(self) -> None:
        """Detiene el barrido y cierra los clientes HTTP."""
        self.scheduler.stop()
        await self.store.close()
        await self.wecom_client.close()


def _build_store(settings: Settings) -> ConversationStore:
    if settings.store_backend == "memory":
        logger.warning("store.memory_backend", extra={"environment": settings.environment})
        return MemoryConversationStore()
    return ApiConversationStore(
        settings.groups_api_base_url,
        timeout=settings.groups_api_timeout_seconds,
        max_attempts=settings.http_max_retries,
        backoff_seconds=settings.http_retry_backoff_seconds,
    )


def build_container(
    settings: Settings,
    *,
    store: ConversationStore | None = None,
    dispatcher: Dispatcher | None = None,
    wecom_client: WeComClient | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Container:
    """Arma el grafo de dependencias a partir de la configuración.

    Los argumentos opcionales reemplazan a los colaboradores externos, lo que
    permite levantar la aplicación con un almacén en memoria y un despachador
    falso.
    """
    store = store or _build_store(settings)
    client = wecom_client or WeComClient(
        corp_id=settings.wecom_corp_id,
        corp_secret=settings.wecom_corp_secret,
        agent_id=settings.wecom_agent_id,
        base_url=settings.wecom_api_base_url,
        max_attempts=settings.http_max_retries,
        backoff_seconds=settings.http_retry_backoff_seconds,
    )
    dispatcher = dispatcher or WeComDispatcher(client)
    locks = KeyedLocks()
    stats = CallbackStats(clock=clock)
    classifier = RoleClassifier(settings.staff_id_exclusion_markers)

    decryptor: PayloadDecryptor | None = None
    if settings.wecom_encoding_aes_key:
        decryptor = PayloadDecryptor(
            settings.wecom_encoding_aes_key,
            settings.wecom_corp_id,
            padding_block_size=settings.wecom_padding_block_size,
        )
        if settings.wecom_padding_block_size > AES_BLOCK_SIZE:
            logger.warning(
                "wecom.padding_bound_relaxed",
                extra={"padding_block_size": settings.wecom_padding_block_size},
            )
    else:
        logger.warning("wecom.plaintext_mode", extra={"reason": "encoding_aes_key not configured"})

    sync = GroupSyncService(client, store, locks)
    ingress = CallbackIngress(
        token=settings.wecom_token,
        decryptor=decryptor,
        store=store,
        locks=locks,
        stats=stats,
        classifier=classifier,
        sync=sync,
    )
    evaluator = ConversationStateEvaluator(settings.alert_thresholds, clock=clock)
    coordinator = SweepCoordinator(
        store,
        evaluator,
        dispatcher,
        locks,
        additional_receivers=settings.alert_additional_receivers,
        preview_chars=settings.alert_content_preview_chars,
        concurrency=settings.sweep_concurrency,
        item_timeout_seconds=settings.sweep_item_timeout_seconds,
    )
    scheduler = SweepScheduler(coordinator, interval_seconds=settings.sweep_interval_seconds)

    return Container(
        settings=settings,
        store=store,
        wecom_client=client,
        dispatcher=dispatcher,
        locks=locks,
        stats=stats,
        classifier=classifier,
        evaluator=evaluator,
        sync=sync,
        ingress=ingress,
        coordinator=coordinator,
        scheduler=scheduler,
    )

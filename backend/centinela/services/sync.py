"""Sincronización de grupos de clientes desde la plataforma."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from centinela.core.logging import get_logger
from centinela.models.conversation import ConversationPatch, ConversationState, Member

from .locks import KeyedLocks
from .store import ConversationStore, StoreError
from .wecom import WeComAPIError, WeComClient

logger = get_logger(__name__)

# En el detalle de grupo, `type == 1` identifica a un miembro de la empresa.
STAFF_MEMBER_TYPE = 1


@dataclass(slots=True)
class SyncReport:
    total: int = 0
    synced: int = 0
    failed: list[str] = field(default_factory=list)


def members_from_detail(detail: dict[str, Any]) -> list[Member]:
    return [
        Member(
            user_id=raw.get("userid") or "unknown",
            role="staff" if raw.get("type") == STAFF_MEMBER_TYPE else "external",
            name=raw.get("name") or None,
        )
        for raw in detail.get("member_list") or []
        if isinstance(raw, dict)
    ]


class GroupSyncService:
    """Crea o actualiza el registro de cada grupo con nombre, dueño y miembros."""

    def __init__(self, client: WeComClient, store: ConversationStore, locks: KeyedLocks) -> None:
        self._client = client
        self._store = store
        self._locks = locks

    async def sync_group(self, chat_id: str) -> ConversationState:
        detail = await self._client.get_group_chat(chat_id)
        name = (detail.get("name") or "").strip()
        if not name:
            logger.warning("sync.empty_name", extra={"chat_id": chat_id})
            name = f"unnamed-{chat_id[:8]}"
        owner = (detail.get("owner") or "").strip()
        if not owner:
            logger.warning("sync.empty_owner", extra={"chat_id": chat_id})
            owner = "unknown"

        patch = ConversationPatch(name=name, owner=owner, members=members_from_detail(detail))
        async with self._locks.hold(chat_id):
            return await self._store.upsert(chat_id, patch)

    async def sync_all(self) -> SyncReport:
        """Sincroniza todos los grupos; un fallo individual no detiene el resto."""
        groups = await self._client.list_group_chats()
        report = SyncReport(total=len(groups))
        logger.info("sync.started", extra={"total": report.total})
        for item in groups:
            chat_id = item.get("chat_id")
            if not chat_id:
                continue
            try:
                await self.sync_group(chat_id)
            except (WeComAPIError, StoreError) as exc:
                report.failed.append(chat_id)
                logger.error("sync.group_failed", extra={"chat_id": chat_id, "error": str(exc)})
            else:
                report.synced += 1
        logger.info(
            "sync.completed",
            extra={"total": report.total, "synced": report.synced, "failed": len(report.failed)},
        )
        return report

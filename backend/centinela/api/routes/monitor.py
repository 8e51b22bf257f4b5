"""Rutas de operación del monitor: sincronización, barrido manual y consultas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from centinela.api.deps import get_container
from centinela.container import Container
from centinela.core.logging import get_logger
from centinela.models.conversation import SenderRole
from centinela.models.events import ConversationEvent
from centinela.services import store as store_service
from centinela.services.store import ConversationNotFound, StoreError
from centinela.services.wecom import WeComAPIError

router = APIRouter(prefix="", tags=["monitor"])

logger = get_logger(__name__)


class SimulatedMessagePayload(BaseModel):
    """Mensaje de prueba para un grupo."""

    conversation_id: str = Field(..., min_length=1, description="Chat id del grupo.")
    sender_id: str = Field(..., min_length=1)
    content: str = ""
    sender_role: SenderRole | None = Field(
        default=None, description="Se infiere del ID del remitente cuando se omite."
    )
    occurred_at: datetime | None = Field(default=None, description="Por defecto, el instante actual.")
    message_id: str | None = None


def _upstream_error(exc: Exception) -> HTTPException:
    return HTTPException(status_code=502, detail=str(exc))


@router.post("/sync", summary="Sincroniza todos los grupos desde la plataforma")
async def sync_groups(container: Container = Depends(get_container)) -> dict[str, Any]:
    try:
        report = await container.sync.sync_all()
    except (WeComAPIError, StoreError) as exc:
        logger.error("monitor.sync_failed", extra={"error": str(exc)})
        raise _upstream_error(exc) from exc
    return {"total": report.total, "synced": report.synced, "failed": report.failed}


@router.post("/check", summary="Ejecuta un barrido inmediato")
async def run_check(container: Container = Depends(get_container)) -> dict[str, Any]:
    summary = await container.coordinator.run_once()
    if summary.aborted:
        raise HTTPException(status_code=502, detail="Conversation store unavailable")
    return summary.as_dict()


@router.post("/simulate/message", summary="Registra un mensaje simulado")
async def simulate_message(
    payload: SimulatedMessagePayload, container: Container = Depends(get_container)
) -> dict[str, Any]:
    event = ConversationEvent(
        message_id=payload.message_id or f"sim-{uuid4().hex[:12]}",
        sender_id=payload.sender_id,
        sender_role=payload.sender_role or container.classifier.classify(payload.sender_id),
        content=payload.content,
        occurred_at=payload.occurred_at or datetime.now(timezone.utc),
        conversation_id=payload.conversation_id,
    )
    try:
        state = await container.ingress.record_event(event)
    except StoreError as exc:
        raise _upstream_error(exc) from exc
    return state.model_dump(mode="json", by_alias=True)


@router.get("/conversations/alerts", summary="Conversaciones que requieren alerta")
async def list_alerts(
    level: int | None = Query(default=None, ge=1),
    container: Container = Depends(get_container),
) -> list[dict[str, Any]]:
    try:
        states = await container.store.list_needing_alert(level)
    except StoreError as exc:
        raise _upstream_error(exc) from exc
    return [state.model_dump(mode="json", by_alias=True) for state in states]


@router.get("/conversations/{conversation_id}", summary="Estado de una conversación")
async def get_conversation(
    conversation_id: str, container: Container = Depends(get_container)
) -> dict[str, Any]:
    try:
        state = await store_service.require(container.store, conversation_id)
    except ConversationNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreError as exc:
        raise _upstream_error(exc) from exc
    return state.model_dump(mode="json", by_alias=True)

"""Texto y destinatarios de las alertas."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta, timezone

from centinela.models.conversation import ConversationState

# Los horarios se muestran en hora de Beijing (UTC+8).
DISPLAY_TZ = timezone(timedelta(hours=8))


def _preview(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return f"{content[:limit]}..."


def render_alert(state: ConversationState, elapsed_minutes: int, *, preview_chars: int = 50) -> str:
    """Construye el mensaje que recibe el responsable del grupo."""
    external = state.last_external_message
    if external is None:
        raise ValueError("No hay mensaje del cliente para alertar")
    sent_at = external.occurred_at.astimezone(DISPLAY_TZ).strftime("%m-%d %H:%M:%S")
    return (
        "【Alerta de respuesta en grupo de clientes】\n"
        f"Grupo: {state.name or state.conversation_id}\n"
        f"Nivel: {state.alert_level}\n"
        f"Sin respuesta desde hace {elapsed_minutes} minutos\n"
        f"Último mensaje del cliente: {sent_at}\n"
        f"Contenido: {_preview(external.content or '', preview_chars)}"
    )


def resolve_recipients(owner: str | None, additional: Iterable[str]) -> list[str]:
    """Dueño del grupo más receptores adicionales, sin duplicados ni vacíos."""
    recipients: list[str] = []
    for candidate in (owner, *additional):
        if not candidate:
            continue
        value = candidate.strip()
        if not value or value == "unknown" or value in recipients:
            continue
        recipients.append(value)
    return recipients

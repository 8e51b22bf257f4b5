"""Pruebas del texto y destinatarios de alertas."""

from datetime import datetime, timezone

from centinela.escalation.alerts import render_alert, resolve_recipients
from centinela.models.conversation import ConversationState, MessageRecord


def _state(content: str) -> ConversationState:
    external = MessageRecord(
        msg_id="m1",
        sender_id="wmcliente",
        sender_role="external",
        content=content,
        occurred_at=datetime(2024, 5, 1, 1, 30, tzinfo=timezone.utc),
    )
    return ConversationState(
        conversation_id="wrchat1",
        name="Clientes VIP",
        owner="ana",
        last_external_message=external,
        alert_level=2,
    )


def test_render_alert_uses_display_timezone() -> None:
    text = render_alert(_state("¿Hay respuesta?"), 31)
    assert "Grupo: Clientes VIP" in text
    assert "Nivel: 2" in text
    assert "31 minutos" in text
    assert "05-01 09:30:00" in text
    assert text.endswith("Contenido: ¿Hay respuesta?")


def test_render_alert_truncates_long_content() -> None:
    text = render_alert(_state("a" * 60), 12, preview_chars=50)
    assert text.endswith("a" * 50 + "...")


def test_recipients_are_deduplicated() -> None:
    assert resolve_recipients("ana", ["luis", "ana", " ", "luis"]) == ["ana", "luis"]


def test_unknown_owner_is_skipped() -> None:
    assert resolve_recipients("unknown", ["supervisor"]) == ["supervisor"]
    assert resolve_recipients(None, []) == []

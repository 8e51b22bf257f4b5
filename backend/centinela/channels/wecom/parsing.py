"""Lectura del sobre de callbacks y clasificación de su contenido."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any

from centinela.models.events import (
    MEDIA_KINDS,
    AuditNotifyEvent,
    ConversationEvent,
    GroupChangeEvent,
    InboundPayload,
    OpaquePayload,
)

from .roles import RoleClassifier


class MalformedEnvelope(ValueError):
    """Faltan campos esperados o el cuerpo no se puede interpretar."""


def _element_to_value(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()
    return {child.tag: _element_to_value(child) for child in children}


def parse_fields(body: str) -> dict[str, Any]:
    """Convierte un cuerpo XML (``<xml>...</xml>``) o JSON en un diccionario plano."""
    text = body.strip()
    if not text:
        raise MalformedEnvelope("Empty body")

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedEnvelope("Body is not valid JSON") from exc
        if isinstance(data, dict) and isinstance(data.get("xml"), dict):
            data = data["xml"]
        if not isinstance(data, dict):
            raise MalformedEnvelope("JSON body must be an object")
        return data

    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise MalformedEnvelope("Body is not valid XML") from exc
    value = _element_to_value(root)
    if not isinstance(value, dict):
        raise MalformedEnvelope("XML body has no fields")
    return value


def extract_encrypted(body: str) -> str:
    """Obtiene el campo ``Encrypt`` del sobre cifrado."""
    encrypted = parse_fields(body).get("Encrypt")
    if not isinstance(encrypted, str) or not encrypted:
        raise MalformedEnvelope("Envelope has no Encrypt field")
    return encrypted


def _timestamp(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(str(value).strip()), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise MalformedEnvelope(f"Invalid CreateTime {value!r}") from exc


def _chat_id(fields: dict[str, Any]) -> str | None:
    info = fields.get("ChatInfo")
    if isinstance(info, dict) and info.get("ChatId"):
        return str(info["ChatId"])
    return None


def to_payload(fields: dict[str, Any], classifier: RoleClassifier) -> InboundPayload:
    """Clasifica los campos descifrados en una variante cerrada."""
    msg_type = fields.get("MsgType")
    if not msg_type:
        return OpaquePayload(msg_type=None, reason="missing_msg_type", fields=fields)
    if not isinstance(msg_type, str):
        return OpaquePayload(msg_type=None, reason="invalid_msg_type", fields=fields)

    if msg_type == "text" or msg_type in MEDIA_KINDS:
        chat_id = _chat_id(fields)
        if chat_id is None:
            return OpaquePayload(msg_type=msg_type, reason="not_group_chat", fields=fields)
        sender = fields.get("FromUserName")
        if not sender:
            raise MalformedEnvelope("Message without FromUserName")
        content = (fields.get("Content") or "") if msg_type == "text" else f"[{msg_type}]"
        return ConversationEvent(
            message_id=str(fields.get("MsgId") or ""),
            sender_id=str(sender),
            sender_role=classifier.classify(str(sender)),
            content=str(content),
            occurred_at=_timestamp(fields.get("CreateTime")),
            conversation_id=chat_id,
            kind=msg_type,
        )

    if msg_type == "event":
        event = fields.get("Event")
        if event == "change_external_chat":
            chat_id = fields.get("ChatId")
            if not chat_id:
                raise MalformedEnvelope("change_external_chat without ChatId")
            return GroupChangeEvent(chat_id=str(chat_id), change_type=str(fields.get("ChangeType") or ""))
        if event == "msgaudit_notify":
            created = fields.get("CreateTime")
            return AuditNotifyEvent(
                agent_id=fields.get("AgentID"),
                occurred_at=_timestamp(created) if created else None,
            )
        return OpaquePayload(msg_type=msg_type, reason=f"unhandled_event:{event}", fields=fields)

    return OpaquePayload(msg_type=msg_type, reason="unhandled_type", fields=fields)

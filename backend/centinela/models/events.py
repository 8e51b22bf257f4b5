"""Variantes cerradas de payloads entrantes ya descifrados."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from .conversation import MessageRecord, SenderRole

MessageKind = Literal["text", "image", "voice", "video"]
MEDIA_KINDS: frozenset[str] = frozenset({"image", "voice", "video"})


@dataclass(frozen=True, slots=True)
class ConversationEvent:
    """Mensaje de un grupo de clientes; se produce una vez por mensaje entrante."""

    message_id: str
    sender_id: str
    sender_role: SenderRole
    content: str
    occurred_at: datetime
    conversation_id: str
    kind: MessageKind = "text"

    def to_record(self) -> MessageRecord:
        return MessageRecord(
            msg_id=self.message_id,
            sender_id=self.sender_id,
            sender_role=self.sender_role,
            content=self.content,
            occurred_at=self.occurred_at,
        )


@dataclass(frozen=True, slots=True)
class GroupChangeEvent:
    """Alta, cambio o disolución de un grupo de clientes."""

    chat_id: str
    change_type: str


@dataclass(frozen=True, slots=True)
class AuditNotifyEvent:
    """Aviso de que hay mensajes nuevos en el archivo de conversaciones."""

    agent_id: str | None
    occurred_at: datetime | None


@dataclass(frozen=True, slots=True)
class OpaquePayload:
    """Cualquier payload que el monitor no interpreta."""

    msg_type: str | None
    reason: str
    fields: dict[str, Any] = field(default_factory=dict)


InboundPayload = Union[ConversationEvent, GroupChangeEvent, AuditNotifyEvent, OpaquePayload]

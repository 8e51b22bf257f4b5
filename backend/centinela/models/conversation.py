"""Modelos del estado persistido de cada conversación de grupo."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

SenderRole = Literal["staff", "external"]


def ensure_utc(value: datetime) -> datetime:
    """Normaliza fechas sin zona horaria asumiendo UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRecord(_CamelModel):
    """Último mensaje conocido de un remitente."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    msg_id: str
    sender_id: str
    sender_role: SenderRole
    content: str = ""
    occurred_at: datetime

    @field_validator("occurred_at")
    @classmethod
    def _normalise_time(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Member(_CamelModel):
    """Integrante de un grupo de clientes."""

    user_id: str
    role: SenderRole
    name: str | None = None


class ConversationState(_CamelModel):
    """Registro persistido por `conversation_id` (chat id del grupo)."""

    conversation_id: str
    record_id: int | str | None = Field(
        default=None, description="Identificador interno asignado por el API de grupos."
    )
    name: str = ""
    owner: str | None = None
    members: list[Member] = Field(default_factory=list)
    last_message: MessageRecord | None = None
    last_staff_message: MessageRecord | None = None
    last_external_message: MessageRecord | None = None
    alert_level: int = Field(default=0, ge=0)
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def need_alert(self) -> bool:
        return self.alert_level > 0

    @property
    def staff_replied(self) -> bool:
        """True cuando el personal respondió en o después del último mensaje externo."""
        external = self.last_external_message
        if external is None:
            return True
        for candidate in (self.last_staff_message, self.last_message):
            if (
                candidate is not None
                and candidate.sender_role == "staff"
                and candidate.occurred_at >= external.occurred_at
            ):
                return True
        return False


class ConversationPatch(_CamelModel):
    """Cambios parciales aplicables a un `ConversationState`.

    Sólo los campos asignados explícitamente forman parte del patch.
    """

    name: str | None = None
    owner: str | None = None
    members: list[Member] | None = None
    last_message: MessageRecord | None = None
    last_staff_message: MessageRecord | None = None
    last_external_message: MessageRecord | None = None
    alert_level: int | None = Field(default=None, ge=0)

    def changes(self) -> dict[str, object]:
        """Campos asignados con sus valores ya validados."""
        return {name: getattr(self, name) for name in self.model_fields_set}


"""Procesamiento de callbacks de WeCom.

Dos operaciones independientes según la forma de la petición:

* ``handle_challenge``: verificación de URL (GET). Falla de forma explícita.
* ``handle_message``: entrega de mensajes (POST). Nunca propaga errores; el
  llamador siempre responde ``success`` para que la plataforma no reintente.
"""

from __future__ import annotations

from centinela.core import security
from centinela.core.crypto import DecryptionError, PayloadDecryptor
from centinela.core.logging import get_logger, log_event
from centinela.core.security import SignatureInvalid
from centinela.models.conversation import ConversationPatch, ConversationState, MessageRecord
from centinela.models.events import (
    AuditNotifyEvent,
    ConversationEvent,
    GroupChangeEvent,
    InboundPayload,
    OpaquePayload,
)
from centinela.services.locks import KeyedLocks
from centinela.services.stats import CallbackStats
from centinela.services.store import ConversationStore, StoreError
from centinela.services.sync import GroupSyncService
from centinela.services.wecom import WeComAPIError

from .parsing import MalformedEnvelope, extract_encrypted, parse_fields, to_payload
from .roles import RoleClassifier

logger = get_logger("centinela.channels.wecom")

ENCRYPTED_MODE = "aes"


def message_patch(current: ConversationState | None, record: MessageRecord) -> ConversationPatch:
    """Patch para registrar ``record`` sin retroceder en el tiempo.

    Un mensaje más antiguo que el ya guardado en su casilla no la reemplaza.
    Un mensaje del personal en o después del último mensaje externo reinicia
    la alerta.
    """
    changes: dict[str, object] = {}

    def newer(existing: MessageRecord | None) -> bool:
        return existing is None or record.occurred_at >= existing.occurred_at

    if current is None or newer(current.last_message):
        changes["last_message"] = record

    if record.sender_role == "staff":
        if current is None or newer(current.last_staff_message):
            changes["last_staff_message"] = record
        external = current.last_external_message if current else None
        if external is None or record.occurred_at >= external.occurred_at:
            changes["alert_level"] = 0
    elif current is None or newer(current.last_external_message):
        changes["last_external_message"] = record

    return ConversationPatch(**changes)


class CallbackIngress:
    """Verifica, descifra y aplica los callbacks de la plataforma."""

    def __init__(
        self,
        *,
        token: str,
        decryptor: PayloadDecryptor | None,
        store: ConversationStore,
        locks: KeyedLocks,
        stats: CallbackStats,
        classifier: RoleClassifier,
        sync: GroupSyncService | None = None,
    ) -> None:
        self._token = token
        self._decryptor = decryptor
        self._store = store
        self._locks = locks
        self._stats = stats
        self._classifier = classifier
        self._sync = sync

    def handle_challenge(self, signature: str, timestamp: str, nonce: str, echostr: str) -> str:
        """Valida la verificación de URL y devuelve el texto a responder.

        Lanza :class:`SignatureInvalid` o :class:`DecryptionError`.
        """
        if not security.verify(self._token, timestamp, nonce, echostr, signature):
            self._stats.record_verification(False, "signature_invalid")
            logger.warning("wecom.challenge_rejected", extra={"reason": "signature_invalid"})
            raise SignatureInvalid("Challenge signature mismatch")

        if self._decryptor is None:
            self._stats.record_verification(True)
            log_event(logger, "wecom.challenge_verified", mode="plaintext")
            return echostr

        try:
            reply = self._decryptor.decrypt(echostr).plaintext
        except DecryptionError as exc:
            self._stats.record_verification(False, type(exc).__name__)
            logger.warning(
                "wecom.challenge_rejected",
                extra={"reason": type(exc).__name__, "error": str(exc)},
            )
            raise
        self._stats.record_verification(True)
        log_event(logger, "wecom.challenge_verified", mode="encrypted")
        return reply

    def open_envelope(
        self, *, signature: str, timestamp: str, nonce: str, body: str, encrypt_type: str
    ) -> InboundPayload:
        """Verifica la firma, descifra si aplica y clasifica el contenido."""
        if encrypt_type == ENCRYPTED_MODE:
            encrypted = extract_encrypted(body)
            security.verify_signature(self._token, timestamp, nonce, encrypted, signature)
            if self._decryptor is None:
                raise MalformedEnvelope("Encrypted callback received without a configured key")
            fields = parse_fields(self._decryptor.decrypt(encrypted).plaintext)
        else:
            security.verify_signature(self._token, timestamp, nonce, None, signature)
            fields = parse_fields(body)
        return to_payload(fields, self._classifier)

    async def handle_message(
        self,
        *,
        signature: str,
        timestamp: str,
        nonce: str,
        body: str,
        encrypt_type: str = ENCRYPTED_MODE,
    ) -> InboundPayload | None:
        """Procesa una entrega; devuelve el payload aplicado o ``None`` si se descartó."""
        try:
            payload = self.open_envelope(
                signature=signature,
                timestamp=timestamp,
                nonce=nonce,
                body=body,
                encrypt_type=encrypt_type,
            )
        except (SignatureInvalid, DecryptionError, MalformedEnvelope) as exc:
            reason = type(exc).__name__
            self._stats.record_message(False, error=reason, details={"detail": str(exc)})
            logger.warning(
                "wecom.message_discarded",
                extra={"reason": reason, "error": str(exc), "encrypt_type": encrypt_type},
            )
            return None
        except Exception as exc:
            self._stats.record_message(False, error=type(exc).__name__)
            logger.exception("wecom.envelope_crashed", extra={"encrypt_type": encrypt_type})
            return None

        kind = _payload_kind(payload)
        try:
            await self.apply(payload)
        except (StoreError, WeComAPIError) as exc:
            self._stats.record_message(False, kind, error=type(exc).__name__, details={"detail": str(exc)})
            logger.error("wecom.apply_failed", extra={"kind": kind, "error": str(exc)})
            return None
        except Exception as exc:
            self._stats.record_message(False, kind, error=type(exc).__name__)
            logger.exception("wecom.apply_crashed", extra={"kind": kind})
            return None

        self._stats.record_message(True, kind)
        return payload

    async def apply(self, payload: InboundPayload) -> None:
        if isinstance(payload, ConversationEvent):
            await self.record_event(payload)
        elif isinstance(payload, GroupChangeEvent):
            await self._apply_group_change(payload)
        elif isinstance(payload, AuditNotifyEvent):
            log_event(logger, "wecom.audit_notify", agent_id=payload.agent_id)
        elif isinstance(payload, OpaquePayload):
            logger.debug(
                "wecom.payload_ignored",
                extra={"msg_type": payload.msg_type, "reason": payload.reason},
            )

    async def record_event(self, event: ConversationEvent) -> ConversationState:
        """Registra un mensaje en su conversación bajo el candado de esa conversación."""
        record = event.to_record()
        async with self._locks.hold(event.conversation_id):
            current = await self._store.get(event.conversation_id)
            patch = message_patch(current, record)
            state = await self._store.upsert(event.conversation_id, patch)
        log_event(
            logger,
            "wecom.message_recorded",
            conversation_id=event.conversation_id,
            sender_role=event.sender_role,
            kind=event.kind,
            alert_reset="alert_level" in patch.model_fields_set,
        )
        return state

    async def _apply_group_change(self, event: GroupChangeEvent) -> None:
        if event.change_type in {"create", "update"}:
            if self._sync is None:
                logger.warning("wecom.group_sync_unavailable", extra={"chat_id": event.chat_id})
                return
            await self._sync.sync_group(event.chat_id)
            log_event(logger, "wecom.group_synced", chat_id=event.chat_id, change_type=event.change_type)
        else:
            log_event(logger, "wecom.group_change_ignored", chat_id=event.chat_id, change_type=event.change_type)


def _payload_kind(payload: InboundPayload) -> str:
    if isinstance(payload, ConversationEvent):
        return payload.kind
    if isinstance(payload, (GroupChangeEvent, AuditNotifyEvent)):
        return "event"
    return payload.msg_type or "other"

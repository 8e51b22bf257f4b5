"""Acceso al estado de conversaciones.

El estado vive detrás del API REST de grupos (``/api/groups``). El formato de
ese API usa camelCase y nombra los roles ``employee``/``customer``; aquí se
traducen a ``staff``/``external``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from centinela.core.logging import get_logger
from centinela.models.conversation import ConversationPatch, ConversationState

from .http import request_with_retry

logger = get_logger(__name__)

_ROLE_TO_WIRE = {"staff": "employee", "external": "customer"}
_ROLE_FROM_WIRE = {value: key for key, value in _ROLE_TO_WIRE.items()}
_PAGE_SIZE = 200


class StoreError(RuntimeError):
    """Errores de persistencia del estado de conversaciones."""


class PersistenceUnavailable(StoreError):
    """El almacén no respondió o respondió con error."""


class ConversationNotFound(StoreError):
    """No existe registro para el `conversation_id` solicitado."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class ConversationStore(Protocol):
    """Operaciones que el monitor necesita del almacén."""

    async def get(self, conversation_id: str) -> ConversationState | None: ...

    async def upsert(self, conversation_id: str, patch: ConversationPatch) -> ConversationState: ...

    async def list_all(self) -> list[ConversationState]: ...

    async def list_needing_alert(self, level: int | None = None) -> list[ConversationState]: ...

    async def close(self) -> None: ...


async def require(store: ConversationStore, conversation_id: str) -> ConversationState:
    """Como ``store.get`` pero lanza :class:`ConversationNotFound` si no existe."""
    state = await store.get(conversation_id)
    if state is None:
        raise ConversationNotFound(conversation_id)
    return state


class MemoryConversationStore:
    """Almacén en memoria del proceso, para desarrollo local y pruebas."""

    def __init__(self, initial: list[ConversationState] | None = None) -> None:
        self._items: dict[str, ConversationState] = {}
        for state in initial or []:
            self._items[state.conversation_id] = state
        self.writes: list[tuple[str, dict[str, Any]]] = []

    async def get(self, conversation_id: str) -> ConversationState | None:
        return self._items.get(conversation_id)

    async def upsert(self, conversation_id: str, patch: ConversationPatch) -> ConversationState:
        changes = patch.changes()
        current = self._items.get(conversation_id) or ConversationState(
            conversation_id=conversation_id, record_id=len(self._items) + 1
        )
        updated = current.model_copy(
            update={**changes, "updated_at": datetime.now(timezone.utc)}
        )
        self._items[conversation_id] = updated
        self.writes.append((conversation_id, changes))
        return updated

    async def list_all(self) -> list[ConversationState]:
        return list(self._items.values())

    async def list_needing_alert(self, level: int | None = None) -> list[ConversationState]:
        return [
            state
            for state in self._items.values()
            if state.need_alert and (level is None or state.alert_level == level)
        ]

    async def close(self) -> None:
        return None


def _message_to_wire(record: Any) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "msgId": record.msg_id,
        "from": record.sender_id,
        "fromType": _ROLE_TO_WIRE[record.sender_role],
        "content": record.content,
        "createTime": record.occurred_at.isoformat(),
    }


def _message_from_wire(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict) or not raw.get("createTime"):
        return None
    role = _ROLE_FROM_WIRE.get(str(raw.get("fromType")), "external")
    return {
        "msg_id": str(raw.get("msgId") or ""),
        "sender_id": str(raw.get("from") or ""),
        "sender_role": role,
        "content": raw.get("content") or "",
        "occurred_at": raw["createTime"],
    }


def state_from_wire(raw: dict[str, Any]) -> ConversationState:
    """Traduce un grupo del API al modelo interno.

    Un registro incompleto o inválido se reporta como ``PersistenceUnavailable``.
    """
    try:
        return _translate_row(raw)
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceUnavailable(f"Grupo con formato inválido: {exc}") from exc


def _translate_row(raw: dict[str, Any]) -> ConversationState:
    members = [
        {
            "user_id": member.get("userId") or "unknown",
            "role": _ROLE_FROM_WIRE.get(str(member.get("userType")), "external"),
            "name": member.get("name"),
        }
        for member in raw.get("members") or []
        if isinstance(member, dict)
    ]
    return ConversationState(
        conversation_id=raw["chatId"],
        record_id=raw.get("id"),
        name=raw.get("name") or "",
        owner=raw.get("owner"),
        members=members,
        last_message=_message_from_wire(raw.get("lastMessage")),
        last_staff_message=_message_from_wire(raw.get("lastEmployeeMessage")),
        last_external_message=_message_from_wire(raw.get("lastCustomerMessage")),
        alert_level=int(raw.get("alertLevel") or 0),
        updated_at=raw.get("updatedAt"),
    )


def _states_from_rows(rows: list[Any]) -> list[ConversationState]:
    states: list[ConversationState] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            states.append(state_from_wire(row))
        except PersistenceUnavailable as exc:
            logger.warning("store.row_skipped", extra={"record_id": row.get("id"), "error": str(exc)})
    return states


def patch_to_wire(patch: ConversationPatch) -> tuple[dict[str, Any], dict[str, Any] | None]:
    """Separa un patch en cuerpo general y cuerpo de `alert-settings`."""
    changes = patch.changes()
    body: dict[str, Any] = {}
    if "name" in changes:
        body["name"] = changes["name"]
    if "owner" in changes:
        body["owner"] = changes["owner"]
    if "members" in changes:
        body["members"] = [
            {"userId": member.user_id, "userType": _ROLE_TO_WIRE[member.role], "name": member.name}
            for member in changes["members"] or []
        ]
    for field, wire in (
        ("last_message", "lastMessage"),
        ("last_staff_message", "lastEmployeeMessage"),
        ("last_external_message", "lastCustomerMessage"),
    ):
        if field in changes:
            body[wire] = _message_to_wire(changes[field])

    alert: dict[str, Any] | None = None
    if changes.get("alert_level") is not None:
        level = int(changes["alert_level"])
        alert = {"needAlert": level > 0, "alertLevel": level}
    return body, alert


class ApiConversationStore:
    """Cliente del API REST de grupos con timeouts y reintentos acotados."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await request_with_retry(
                self._client,
                method,
                path,
                max_attempts=self._max_attempts,
                backoff_seconds=self._backoff,
                logger=logger,
                **kwargs,
            )
        except httpx.RequestError as exc:
            msg = f"Error de red contra el API de grupos: {exc}"
            logger.error("store.network_error", extra={"path": path, "error": str(exc)})
            raise PersistenceUnavailable(msg) from exc

    @staticmethod
    def _payload(response: httpx.Response, action: str) -> Any:
        if response.status_code >= 400:
            detail: Any = response.text
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                detail = body["message"]
            msg = f"API de grupos respondió error al {action} (status={response.status_code}, detail={detail!r})"
            logger.error("store.http_error", extra={"action": action, "status_code": response.status_code})
            raise PersistenceUnavailable(msg)
        try:
            body = response.json()
        except ValueError as exc:
            raise PersistenceUnavailable(f"Respuesta no JSON al {action}") from exc
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def _fetch_raw(self, conversation_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/api/groups/chat/{conversation_id}")
        if response.status_code == 404:
            return None
        data = self._payload(response, "consultar grupo")
        return data if isinstance(data, dict) else None

    async def get(self, conversation_id: str) -> ConversationState | None:
        raw = await self._fetch_raw(conversation_id)
        return state_from_wire(raw) if raw else None

    async def upsert(self, conversation_id: str, patch: ConversationPatch) -> ConversationState:
        body, alert = patch_to_wire(patch)
        raw = await self._fetch_raw(conversation_id)
        if raw is None:
            create = {"chatId": conversation_id, "name": "", "owner": "unknown", "members": []}
            create.update(body)
            response = await self._request("POST", "/api/groups", json=create)
            raw = self._payload(response, "crear grupo")
            body = {}
        record_id = raw.get("id")
        if record_id is None:
            raise PersistenceUnavailable(f"El grupo {conversation_id} no tiene id asignado")

        if body:
            response = await self._request("PATCH", f"/api/groups/{record_id}", json=body)
            raw = self._payload(response, "actualizar grupo")
        if alert is not None:
            response = await self._request(
                "PATCH", f"/api/groups/{record_id}/alert-settings", json=alert
            )
            raw = self._payload(response, "actualizar alerta")
        return state_from_wire(raw)

    async def list_all(self) -> list[ConversationState]:
        states: list[ConversationState] = []
        page = 1
        while True:
            response = await self._request(
                "GET", "/api/groups", params={"page": page, "pageSize": _PAGE_SIZE}
            )
            data = self._payload(response, "listar grupos")
            rows = data.get("data", []) if isinstance(data, dict) else data or []
            states.extend(_states_from_rows(rows))
            total_pages = int(data.get("totalPages") or 1) if isinstance(data, dict) else 1
            if page >= total_pages or not rows:
                return states
            page += 1

    async def list_needing_alert(self, level: int | None = None) -> list[ConversationState]:
        params = {"alertLevel": str(level)} if level is not None else None
        response = await self._request("GET", "/api/groups/alerts/list", params=params)
        data = self._payload(response, "listar alertas")
        return _states_from_rows(data if isinstance(data, list) else [])

    async def close(self) -> None:
        await self._client.aclose()

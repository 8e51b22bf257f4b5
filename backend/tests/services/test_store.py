"""Pruebas de los almacenes de conversaciones."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from centinela.models.conversation import ConversationPatch, MessageRecord
from centinela.services.store import (
    ApiConversationStore,
    ConversationNotFound,
    MemoryConversationStore,
    PersistenceUnavailable,
    patch_to_wire,
    require,
    state_from_wire,
)

AT = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

WIRE_GROUP = {
    "id": 7,
    "chatId": "wrchat1",
    "name": "Clientes VIP",
    "owner": "ana",
    "members": [{"userId": "ana", "userType": "employee"}, {"userId": "wmx", "userType": "customer"}],
    "lastCustomerMessage": {
        "msgId": "m1",
        "from": "wmx",
        "fromType": "customer",
        "content": "hola",
        "createTime": "2024-05-01T09:00:00+00:00",
    },
    "alertLevel": 2,
}


def _record(role: str = "external") -> MessageRecord:
    return MessageRecord(msg_id="m1", sender_id="wmx", sender_role=role, content="hola", occurred_at=AT)


async def test_memory_store_upsert_creates_and_patches() -> None:
    store = MemoryConversationStore()
    created = await store.upsert("wrchat1", ConversationPatch(name="Grupo"))
    assert created.name == "Grupo"
    assert created.alert_level == 0

    updated = await store.upsert("wrchat1", ConversationPatch(alert_level=2))
    assert updated.name == "Grupo"
    assert updated.alert_level == 2
    assert await store.list_needing_alert() == [updated]
    assert await store.list_needing_alert(1) == []
    assert store.writes[-1] == ("wrchat1", {"alert_level": 2})


async def test_require_raises_when_missing() -> None:
    with pytest.raises(ConversationNotFound):
        await require(MemoryConversationStore(), "nope")


def test_state_from_wire_translates_roles() -> None:
    state = state_from_wire(WIRE_GROUP)
    assert state.record_id == 7
    assert [member.role for member in state.members] == ["staff", "external"]
    assert state.last_external_message.sender_role == "external"
    assert state.last_external_message.occurred_at == AT
    assert state.last_staff_message is None
    assert state.need_alert


def test_patch_to_wire_splits_alert_settings() -> None:
    body, alert = patch_to_wire(ConversationPatch(last_external_message=_record(), alert_level=0))
    assert body["lastCustomerMessage"]["fromType"] == "customer"
    assert alert == {"needAlert": False, "alertLevel": 0}

    body, alert = patch_to_wire(ConversationPatch(name="Grupo"))
    assert body == {"name": "Grupo"}
    assert alert is None


async def test_api_store_get_returns_none_on_404() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/groups/chat/wrmissing"
        return httpx.Response(404, json={"message": "not found"})

    store = ApiConversationStore("http://groups", transport=httpx.MockTransport(handler))
    assert await store.get("wrmissing") is None
    await store.close()


async def test_api_store_upsert_creates_then_sets_alert() -> None:
    calls: list[tuple[str, str, dict | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        calls.append((request.method, request.url.path, body))
        if request.method == "GET":
            return httpx.Response(404)
        if request.method == "POST":
            return httpx.Response(201, json={"data": {**body, "id": 9}})
        return httpx.Response(200, json={"data": {**WIRE_GROUP, "id": 9, "alertLevel": body["alertLevel"]}})

    store = ApiConversationStore("http://groups", transport=httpx.MockTransport(handler))
    state = await store.upsert(
        "wrchat1", ConversationPatch(last_external_message=_record(), alert_level=1)
    )

    assert [(method, path) for method, path, _ in calls] == [
        ("GET", "/api/groups/chat/wrchat1"),
        ("POST", "/api/groups"),
        ("PATCH", "/api/groups/9/alert-settings"),
    ]
    assert calls[1][2]["lastCustomerMessage"]["msgId"] == "m1"
    assert state.alert_level == 1
    await store.close()


async def test_api_store_lists_every_page() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        row = {**WIRE_GROUP, "id": page, "chatId": f"wr{page}"}
        return httpx.Response(200, json={"data": {"data": [row], "totalPages": 3}})

    store = ApiConversationStore("http://groups", transport=httpx.MockTransport(handler))
    states = await store.list_all()
    assert [state.conversation_id for state in states] == ["wr1", "wr2", "wr3"]
    await store.close()


async def test_api_store_retries_then_raises_persistence_unavailable() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503, text="unavailable")

    store = ApiConversationStore(
        "http://groups", max_attempts=3, backoff_seconds=0, transport=httpx.MockTransport(handler)
    )
    with pytest.raises(PersistenceUnavailable):
        await store.list_needing_alert(2)
    assert attempts == 3
    await store.close()


async def test_api_store_network_error_is_persistence_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    store = ApiConversationStore(
        "http://groups", max_attempts=2, backoff_seconds=0, transport=httpx.MockTransport(handler)
    )
    with pytest.raises(PersistenceUnavailable):
        await store.get("wrchat1")
    await store.close()


@pytest.mark.parametrize(
    "raw",
    [
        {"id": 1, "name": "sin chatId"},
        {**WIRE_GROUP, "alertLevel": "alto"},
        {**WIRE_GROUP, "lastCustomerMessage": {"createTime": "ayer"}},
    ],
)
def test_state_from_wire_rejects_invalid_rows(raw: dict) -> None:
    with pytest.raises(PersistenceUnavailable):
        state_from_wire(raw)


async def test_api_store_list_skips_invalid_rows() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/groups/alerts/list":
            return httpx.Response(200, json={"data": [{"id": 2}, WIRE_GROUP]})
        return httpx.Response(200, json={"data": [{"id": 1, "name": "sin chatId"}, WIRE_GROUP]})

    store = ApiConversationStore("http://groups", transport=httpx.MockTransport(handler))
    assert [state.conversation_id for state in await store.list_all()] == ["wrchat1"]
    assert [state.conversation_id for state in await store.list_needing_alert()] == ["wrchat1"]
    await store.close()

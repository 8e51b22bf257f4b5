"""Fixtures compartidas para las pruebas."""

from __future__ import annotations

from collections.abc import Sequence

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from centinela.container import Container, build_container
from centinela.core.config import Settings
from centinela.core.crypto import PayloadDecryptor
from centinela.main import create_app
from centinela.services.store import MemoryConversationStore
from centinela.services.wecom import WeComClient

TOKEN = "QDG6eK"
AES_KEY = "jWmYm7qr5nMoAUwZRjGtBxmz3KA1tkAj3ykkR6q2B2C"
CORP_ID = "wx5823bf96d3bd56c7"


class RecordingDispatcher:
    """Despachador falso que guarda cada envío."""

    def __init__(self, *, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[tuple[str, str, list[str]]] = []

    async def send(self, conversation_id: str, text: str, recipient_ids: Sequence[str]) -> bool:
        self.sent.append((conversation_id, text, list(recipient_ids)))
        return self.succeed


def _unreachable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"errcode": -1, "errmsg": "no disponible en pruebas"})


@pytest.fixture(name="settings")
def fixture_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        wecom_corp_id=CORP_ID,
        wecom_corp_secret="secret",
        wecom_agent_id="1000002",
        wecom_token=TOKEN,
        wecom_encoding_aes_key=AES_KEY,
        alert_thresholds=[10, 30, 60],
        alert_additional_receivers=["supervisor"],
        store_backend="memory",
        sweep_enabled=False,
        http_max_retries=1,
        http_retry_backoff_seconds=0,
    )


@pytest.fixture(name="decryptor")
def fixture_decryptor() -> PayloadDecryptor:
    return PayloadDecryptor(AES_KEY, CORP_ID)


@pytest.fixture(name="dispatcher")
def fixture_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture(name="store")
def fixture_store() -> MemoryConversationStore:
    return MemoryConversationStore()


@pytest.fixture(name="container")
def fixture_container(
    settings: Settings, store: MemoryConversationStore, dispatcher: RecordingDispatcher
) -> Container:
    client = WeComClient(
        corp_id=settings.wecom_corp_id,
        corp_secret=settings.wecom_corp_secret,
        agent_id=settings.wecom_agent_id,
        max_attempts=1,
        backoff_seconds=0,
        transport=httpx.MockTransport(_unreachable),
    )
    return build_container(settings, store=store, dispatcher=dispatcher, wecom_client=client)


@pytest.fixture(name="async_client")
async def fixture_async_client(container: Container) -> AsyncClient:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    app = create_app(container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

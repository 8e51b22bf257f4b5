"""Pruebas del ensamblado de colaboradores."""

import logging

import pytest

from centinela.container import build_container
from centinela.core.config import Settings
from centinela.services.store import MemoryConversationStore


@pytest.mark.parametrize("block_size, warned", [(16, False), (32, True)])
async def test_relaxed_padding_bound_is_warned(
    settings: Settings, caplog: pytest.LogCaptureFixture, block_size: int, warned: bool
) -> None:
    relaxed = settings.model_copy(update={"wecom_padding_block_size": block_size})

    with caplog.at_level(logging.WARNING, logger="centinela"):
        container = build_container(relaxed, store=MemoryConversationStore())

    messages = [record.getMessage() for record in caplog.records]
    assert ("wecom.padding_bound_relaxed" in messages) is warned
    await container.aclose()

"""Pruebas de los reintentos HTTP."""

import httpx
import pytest

from centinela.core.logging import get_logger
from centinela.services.http import request_with_retry

logger = get_logger("tests.http")


async def test_client_errors_are_not_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(400)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await request_with_retry(
            client, "GET", "http://x/", max_attempts=3, backoff_seconds=0, logger=logger
        )
    assert response.status_code == 400
    assert attempts == 1


async def test_recovers_after_retryable_status() -> None:
    statuses = iter([503, 429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await request_with_retry(
            client, "GET", "http://x/", max_attempts=3, backoff_seconds=0, logger=logger
        )
    assert response.status_code == 200


async def test_network_error_is_raised_after_last_attempt() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.ReadTimeout):
            await request_with_retry(
                client, "GET", "http://x/", max_attempts=2, backoff_seconds=0, logger=logger
            )


async def test_rejects_non_positive_attempts() -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200))) as client:
        with pytest.raises(ValueError):
            await request_with_retry(client, "GET", "http://x/", max_attempts=0, backoff_seconds=0, logger=logger)

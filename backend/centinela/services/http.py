"""Reintentos acotados para llamadas HTTP salientes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int,
    backoff_seconds: float,
    logger: logging.Logger,
    **kwargs: Any,
) -> httpx.Response:
    """Ejecuta la petición hasta ``max_attempts`` veces con backoff exponencial.

    Devuelve la última respuesta recibida (aunque sea un error HTTP no
    reintentable) y relanza el último ``httpx.RequestError`` si ninguna
    petición llegó a responder.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    last_error: httpx.RequestError | None = None
    response: httpx.Response | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            last_error = exc
            logger.warning(
                "http.request_error",
                extra={"method": method, "url": url, "attempt": attempt, "error": str(exc)},
            )
        else:
            if response.status_code not in _RETRYABLE_STATUS:
                return response
            logger.warning(
                "http.retryable_status",
                extra={
                    "method": method,
                    "url": url,
                    "attempt": attempt,
                    "status_code": response.status_code,
                },
            )

        if attempt < max_attempts and backoff_seconds > 0:
            await asyncio.sleep(backoff_seconds * 2 ** (attempt - 1))

    if response is not None:
        return response
    raise last_error

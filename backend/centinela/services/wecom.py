"""Cliente del API de WeCom: token de acceso, grupos de clientes y mensajes de aplicación."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import httpx

from centinela.core.logging import get_logger
from centinela.core.security import mask_secret

from .http import request_with_retry

logger = get_logger(__name__)

# Margen para renovar el token antes de que expire.
TOKEN_EXPIRY_MARGIN_SECONDS = 300
GROUP_LIST_PAGE_SIZE = 100


class WeComAPIError(RuntimeError):
    """Respuesta con `errcode` distinto de cero o fallo de transporte."""

    def __init__(self, action: str, detail: Any) -> None:
        self.action = action
        self.detail = detail
        super().__init__(f"WeCom {action} failed: {detail}")


class WeComClient:
    """Llamadas al API de la plataforma usadas por el monitor."""

    def __init__(
        self,
        *,
        corp_id: str,
        corp_secret: str | None,
        agent_id: str | None,
        base_url: str = "https://qyapi.weixin.qq.com",
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._corp_id = corp_id
        self._corp_secret = corp_secret
        self._agent_id = agent_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._clock = clock
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    async def _call(self, method: str, path: str, action: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await request_with_retry(
                self._client,
                method,
                path,
                max_attempts=self._max_attempts,
                backoff_seconds=self._backoff,
                logger=logger,
                **kwargs,
            )
        except httpx.RequestError as exc:
            raise WeComAPIError(action, str(exc)) from exc
        if response.status_code >= 400:
            raise WeComAPIError(action, f"status={response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise WeComAPIError(action, "respuesta no JSON") from exc
        if not isinstance(data, dict) or data.get("errcode", 0) != 0:
            raise WeComAPIError(action, data)
        return data

    async def get_access_token(self) -> str:
        """Obtiene el token de acceso, reutilizándolo mientras siga vigente."""
        if self._access_token and self._clock() < self._token_expires_at:
            return self._access_token
        if not self._corp_id or not self._corp_secret:
            raise WeComAPIError("gettoken", "corp_id/corp_secret no configurados")

        data = await self._call(
            "GET",
            "/cgi-bin/gettoken",
            "gettoken",
            params={"corpid": self._corp_id, "corpsecret": self._corp_secret},
        )
        token = data.get("access_token")
        if not token:
            raise WeComAPIError("gettoken", data)
        expires_in = int(data.get("expires_in") or 7200)
        self._access_token = token
        self._token_expires_at = self._clock() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        logger.info("wecom.token_refreshed", extra={"access": mask_secret(token), "expires_in": expires_in})
        return token

    async def list_group_chats(self) -> list[dict[str, Any]]:
        """Lista todos los grupos de clientes recorriendo el cursor."""
        groups: list[dict[str, Any]] = []
        cursor = ""
        while True:
            token = await self.get_access_token()
            data = await self._call(
                "POST",
                "/cgi-bin/externalcontact/groupchat/list",
                "groupchat/list",
                params={"access_token": token},
                json={"status_filter": 0, "limit": GROUP_LIST_PAGE_SIZE, "cursor": cursor},
            )
            groups.extend(data.get("group_chat_list") or [])
            cursor = data.get("next_cursor") or ""
            if not cursor:
                return groups

    async def get_group_chat(self, chat_id: str) -> dict[str, Any]:
        token = await self.get_access_token()
        data = await self._call(
            "POST",
            "/cgi-bin/externalcontact/groupchat/get",
            "groupchat/get",
            params={"access_token": token},
            json={"chat_id": chat_id},
        )
        return data.get("group_chat") or {}

    async def send_app_message(self, content: str, to_user: str) -> None:
        """Envía un mensaje de texto de la aplicación a un usuario."""
        token = await self.get_access_token()
        await self._call(
            "POST",
            "/cgi-bin/message/send",
            "message/send",
            params={"access_token": token},
            json={
                "touser": to_user,
                "msgtype": "text",
                "agentid": self._agent_id,
                "text": {"content": content},
            },
        )

    async def close(self) -> None:
        await self._client.aclose()


class Dispatcher(Protocol):
    """Entrega de alertas: `True` cuando todos los destinatarios la recibieron."""

    async def send(
        self, conversation_id: str, text: str, recipient_ids: Sequence[str]
    ) -> bool: ...


class WeComDispatcher:
    """Envía alertas como mensajes de aplicación, uno por destinatario."""

    def __init__(self, client: WeComClient) -> None:
        self._client = client

    async def send(self, conversation_id: str, text: str, recipient_ids: Sequence[str]) -> bool:
        if not recipient_ids:
            logger.warning("dispatch.no_recipients", extra={"conversation_id": conversation_id})
            return False
        delivered = True
        for recipient in recipient_ids:
            try:
                await self._client.send_app_message(text, recipient)
            except WeComAPIError as exc:
                delivered = False
                logger.error(
                    "dispatch.failed",
                    extra={
                        "conversation_id": conversation_id,
                        "recipient": recipient,
                        "error": str(exc),
                    },
                )
            else:
                logger.info(
                    "dispatch.sent",
                    extra={"conversation_id": conversation_id, "recipient": recipient},
                )
        return delivered

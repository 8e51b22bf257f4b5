"""Endpoints del callback de WeCom."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from centinela.api.deps import get_container
from centinela.container import Container
from centinela.core.crypto import DecryptionError
from centinela.core.security import SignatureInvalid
from centinela.services.stats import CallbackStats

from .deps import get_ingress
from .service import ENCRYPTED_MODE, CallbackIngress

router = APIRouter(prefix="/wecom", tags=["wecom"])

ACK = "success"


def _signature(msg_signature: str | None, signature: str | None) -> str:
    return msg_signature or signature or ""


def get_stats(container: Container = Depends(get_container)) -> CallbackStats:
    return container.stats


@router.get(
    "/callback",
    response_class=PlainTextResponse,
    summary="Verificación de URL",
    responses={401: {"description": "Firma inválida o echostr indescifrable"}},
)
def verify_callback_url(
    timestamp: str = Query(...),
    nonce: str = Query(...),
    echostr: str = Query(..., min_length=1),
    msg_signature: str | None = Query(default=None),
    signature: str | None = Query(default=None),
    ingress: CallbackIngress = Depends(get_ingress),
) -> PlainTextResponse:
    """Responde el ``echostr`` descifrado; 401 si la firma o el descifrado fallan.

    Si falta ``timestamp``, ``nonce`` o ``echostr`` la validación de FastAPI
    responde 422 antes de llegar a la verificación.
    """
    try:
        reply = ingress.handle_challenge(
            _signature(msg_signature, signature), timestamp, nonce, echostr
        )
    except SignatureInvalid as exc:
        raise HTTPException(status_code=401, detail="Invalid signature") from exc
    except DecryptionError as exc:
        raise HTTPException(status_code=401, detail="Challenge could not be decrypted") from exc
    return PlainTextResponse(reply)


@router.post("/callback", response_class=PlainTextResponse, summary="Recepción de mensajes")
async def receive_callback(
    request: Request,
    timestamp: str = Query(default=""),
    nonce: str = Query(default=""),
    msg_signature: str | None = Query(default=None),
    signature: str | None = Query(default=None),
    encrypt_type: str | None = Query(default=None),
    encrypt_type_header: str | None = Header(default=None, alias="encrypt-type"),
    ingress: CallbackIngress = Depends(get_ingress),
) -> PlainTextResponse:
    """Siempre responde ``success``; los fallos internos sólo se registran."""
    raw = await request.body()
    await ingress.handle_message(
        signature=_signature(msg_signature, signature),
        timestamp=timestamp,
        nonce=nonce,
        body=raw.decode("utf-8", errors="replace"),
        encrypt_type=(encrypt_type or encrypt_type_header or ENCRYPTED_MODE).lower(),
    )
    return PlainTextResponse(ACK)


@router.get("/callback/stats", summary="Estadísticas de callbacks")
def callback_stats(stats: CallbackStats = Depends(get_stats)) -> dict[str, Any]:
    return stats.snapshot()


@router.post("/callback/stats/reset", summary="Reinicia las estadísticas")
def reset_callback_stats(stats: CallbackStats = Depends(get_stats)) -> dict[str, str]:
    stats.reset()
    return {"status": "reset"}

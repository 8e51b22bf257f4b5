"""Firmas de callbacks de WeCom.

La plataforma firma cada callback ordenando lexicográficamente
``[token, timestamp, nonce, contenido]``, concatenando sin separador y
calculando SHA-1 en hexadecimal minúsculo. El contenido (``echostr`` o el
campo ``Encrypt``) se omite en el modo de verificación sin cifrado.
"""

from __future__ import annotations

import hashlib
import hmac


class SignatureInvalid(Exception):
    """La firma recibida no corresponde a los campos firmados."""


def compute_signature(token: str, timestamp: str, nonce: str, content: str | None = None) -> str:
    """Calcula la firma SHA-1 sobre los campos ordenados."""
    parts = [token, timestamp, nonce]
    if content is not None:
        parts.append(content)
    joined = "".join(sorted(parts))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


def verify(
    token: str,
    timestamp: str,
    nonce: str,
    content: str | None,
    signature: str,
) -> bool:
    """Indica si ``signature`` es válida para los campos dados.

    La comparación es de tiempo constante.
    """
    if not signature:
        return False
    expected = compute_signature(token, timestamp, nonce, content)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def verify_signature(
    token: str,
    timestamp: str,
    nonce: str,
    content: str | None,
    signature: str,
) -> None:
    """Variante de :func:`verify` que lanza :class:`SignatureInvalid`."""
    if not verify(token, timestamp, nonce, content, signature):
        raise SignatureInvalid("Invalid signature received")


def mask_secret(value: str | None) -> str | None:
    """Enmascara secretos para logging seguro."""
    if not value:
        return value
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"

"""Cifrado simétrico de payloads de WeCom.

Estructura del texto plano (antes del relleno)::

    [0, 16)        bytes aleatorios, se descartan
    [16, 20)       longitud N del cuerpo, entero sin signo big-endian
    [20, 20 + N)   cuerpo del mensaje (XML o JSON)
    [20 + N, fin)  identificador del tenant (corp id)

La clave AES-256 se obtiene decodificando ``encoding_aes_key + "="`` y el IV
son sus primeros 16 bytes. El relleno PKCS#7 se quita manualmente.
"""

from __future__ import annotations

import base64
import binascii
import os
import struct
from dataclasses import dataclass

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

AES_BLOCK_SIZE = 16
_RANDOM_PREFIX = 16
_LENGTH_FIELD = 4
_HEADER = _RANDOM_PREFIX + _LENGTH_FIELD


class DecryptionError(Exception):
    """Base de los fallos al recuperar un payload cifrado."""


class PaddingError(DecryptionError):
    """El byte de relleno está fuera del rango permitido."""


class TenantMismatch(DecryptionError):
    """El tenant embebido no coincide con el configurado."""

    def __init__(self, expected: str, received: str) -> None:
        self.expected = expected
        self.received = received
        super().__init__("Tenant identifier does not match configuration")


class MalformedCiphertext(DecryptionError):
    """El texto cifrado no tiene la forma esperada."""


class InvalidKeyError(ValueError):
    """La clave configurada no produce 32 bytes."""


@dataclass(frozen=True, slots=True)
class DecryptedPayload:
    """Cuerpo en claro y tenant recuperados de un payload."""

    plaintext: str
    tenant_id: str


def derive_key(encoding_aes_key: str) -> bytes:
    """Decodifica la clave de 43 caracteres publicada por la plataforma."""
    try:
        key = base64.b64decode(encoding_aes_key + "=", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKeyError("encoding_aes_key is not valid base64") from exc
    if len(key) != 32:
        raise InvalidKeyError(f"encoding_aes_key must decode to 32 bytes, got {len(key)}")
    return key


def strip_padding(data: bytes, block_size: int = AES_BLOCK_SIZE) -> bytes:
    """Quita el relleno PKCS#7 validando que el byte final esté en ``[1, block_size]``."""
    if not data:
        raise PaddingError("Empty plaintext")
    pad = data[-1]
    if pad < 1 or pad > block_size:
        raise PaddingError(f"Invalid padding byte {pad}")
    if pad > len(data):
        raise PaddingError(f"Padding {pad} longer than plaintext")
    return data[:-pad]


def add_padding(data: bytes, block_size: int = AES_BLOCK_SIZE) -> bytes:
    pad = block_size - (len(data) % block_size)
    return data + bytes([pad]) * pad


def split_envelope(buffer: bytes) -> tuple[bytes, bytes]:
    """Separa cuerpo y tenant del texto plano ya sin relleno."""
    if len(buffer) < _HEADER:
        raise MalformedCiphertext("Plaintext shorter than envelope header")
    (length,) = struct.unpack(">I", buffer[_RANDOM_PREFIX:_HEADER])
    end = _HEADER + length
    if end > len(buffer):
        raise MalformedCiphertext(
            f"Declared body length {length} exceeds plaintext size {len(buffer) - _HEADER}"
        )
    return buffer[_HEADER:end], buffer[end:]


class PayloadDecryptor:
    """Descifra y cifra payloads con la clave compartida de un tenant."""

    def __init__(
        self,
        encoding_aes_key: str,
        tenant_id: str,
        *,
        padding_block_size: int = AES_BLOCK_SIZE,
    ) -> None:
        self._key = derive_key(encoding_aes_key)
        self._iv = self._key[:AES_BLOCK_SIZE]
        self._tenant_id = tenant_id
        self._padding_block_size = padding_block_size

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def decrypt(self, ciphertext_b64: str) -> DecryptedPayload:
        """Recupera el cuerpo en claro y valida el tenant embebido."""
        try:
            raw = base64.b64decode(ciphertext_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedCiphertext("Ciphertext is not valid base64") from exc
        if not raw or len(raw) % AES_BLOCK_SIZE:
            raise MalformedCiphertext(
                f"Ciphertext length {len(raw)} is not a positive multiple of {AES_BLOCK_SIZE}"
            )

        decryptor = self._cipher().decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()
        body, tenant = split_envelope(strip_padding(padded, self._padding_block_size))

        try:
            plaintext = body.decode("utf-8")
            received_tenant = tenant.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedCiphertext("Decrypted payload is not valid UTF-8") from exc

        if received_tenant != self._tenant_id:
            raise TenantMismatch(self._tenant_id, received_tenant)
        return DecryptedPayload(plaintext=plaintext, tenant_id=received_tenant)

    def encrypt(self, plaintext: str, *, nonce: bytes | None = None) -> str:
        """Construye un payload cifrado con el mismo formato que envía la plataforma."""
        prefix = nonce if nonce is not None else os.urandom(_RANDOM_PREFIX)
        if len(prefix) != _RANDOM_PREFIX:
            raise ValueError(f"nonce must be {_RANDOM_PREFIX} bytes")
        body = plaintext.encode("utf-8")
        buffer = prefix + struct.pack(">I", len(body)) + body + self._tenant_id.encode("utf-8")
        encryptor = self._cipher().encryptor()
        padded = add_padding(buffer, self._padding_block_size)
        return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")

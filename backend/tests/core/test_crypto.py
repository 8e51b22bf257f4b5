"""Pruebas del cifrado de payloads."""

import base64
import struct

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from centinela.core import crypto

AES_KEY = "jWmYm7qr5nMoAUwZRjGtBxmz3KA1tkAj3ykkR6q2B2C"
CORP_ID = "wx5823bf96d3bd56c7"

# Vector publicado en la documentación de la plataforma para la verificación de URL.
VENDOR_ECHOSTR = (
    "P9nAzCzyDtyTWESHep1vC5X9xho/qYX3Zpb4yKa9SKld1DsH3Iyt3tP3zNdtp+4RPcs8TgAE7OaBO+FZXvnaqQ=="
)
VENDOR_PLAINTEXT = "1616140317555161061"


def _raw_encrypt(plaintext: bytes) -> str:
    """Cifra sin agregar relleno, para fabricar entradas inválidas."""
    key = crypto.derive_key(AES_KEY)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(key[:16])).encryptor()
    return base64.b64encode(encryptor.update(plaintext) + encryptor.finalize()).decode()


def test_derive_key_produces_32_bytes() -> None:
    assert len(crypto.derive_key(AES_KEY)) == 32


def test_derive_key_rejects_short_key() -> None:
    with pytest.raises(crypto.InvalidKeyError):
        crypto.derive_key("abc")


def test_decrypts_vendor_fixture() -> None:
    decryptor = crypto.PayloadDecryptor(AES_KEY, CORP_ID)
    payload = decryptor.decrypt(VENDOR_ECHOSTR)
    assert payload.plaintext == VENDOR_PLAINTEXT
    assert payload.tenant_id == CORP_ID


def test_encrypt_produces_platform_layout() -> None:
    decryptor = crypto.PayloadDecryptor(AES_KEY, CORP_ID)
    nonce = b"0123456789abcdef"
    ciphertext = decryptor.encrypt("<xml><Content>hola</Content></xml>", nonce=nonce)

    key = crypto.derive_key(AES_KEY)
    raw = Cipher(algorithms.AES(key), modes.CBC(key[:16])).decryptor()
    plain = raw.update(base64.b64decode(ciphertext)) + raw.finalize()
    body = "<xml><Content>hola</Content></xml>".encode()

    assert plain[:16] == nonce
    assert struct.unpack(">I", plain[16:20]) == (len(body),)
    assert plain[20 : 20 + len(body)] == body
    assert plain[20 + len(body) :].rstrip(bytes([plain[-1]])).decode() == CORP_ID
    assert decryptor.decrypt(ciphertext).plaintext == body.decode()


def test_multibyte_body_length_is_counted_in_bytes() -> None:
    decryptor = crypto.PayloadDecryptor(AES_KEY, CORP_ID)
    text = "客户消息：你好"
    assert decryptor.decrypt(decryptor.encrypt(text)).plaintext == text


@pytest.mark.parametrize("pad_byte", [0, 17, 32])
def test_out_of_range_padding_is_rejected(pad_byte: int) -> None:
    plaintext = b"x" * 31 + bytes([pad_byte])
    decryptor = crypto.PayloadDecryptor(AES_KEY, CORP_ID)
    with pytest.raises(crypto.PaddingError):
        decryptor.decrypt(_raw_encrypt(plaintext))


def test_padding_bound_follows_configured_block_size() -> None:
    data = b"x" * 12 + bytes([20]) * 20
    assert crypto.strip_padding(data, 32) == b"x" * 12
    with pytest.raises(crypto.PaddingError):
        crypto.strip_padding(data, 16)


def test_tenant_mismatch_is_reported() -> None:
    foreign = crypto.PayloadDecryptor(AES_KEY, "wwforeigncorp")
    ciphertext = foreign.encrypt("<xml/>")
    with pytest.raises(crypto.TenantMismatch) as excinfo:
        crypto.PayloadDecryptor(AES_KEY, CORP_ID).decrypt(ciphertext)
    assert excinfo.value.received == "wwforeigncorp"
    assert excinfo.value.expected == CORP_ID


@pytest.mark.parametrize(
    "ciphertext",
    [
        "no es base64!!",
        base64.b64encode(b"x" * 10).decode(),
        "",
    ],
)
def test_malformed_ciphertext(ciphertext: str) -> None:
    with pytest.raises(crypto.MalformedCiphertext):
        crypto.PayloadDecryptor(AES_KEY, CORP_ID).decrypt(ciphertext)


def test_declared_length_beyond_buffer_is_malformed() -> None:
    body = b"\x00" * 16 + struct.pack(">I", 500) + b"short"
    decryptor = crypto.PayloadDecryptor(AES_KEY, CORP_ID)
    with pytest.raises(crypto.MalformedCiphertext):
        decryptor.decrypt(_raw_encrypt(crypto.add_padding(body)))

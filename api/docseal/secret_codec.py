"""
Reversible encryption of certificate unlock passwords.

Tokens have the form ``ivB64:tagB64:cipherHex`` and are produced with
AES-256-GCM (96-bit nonce, 128-bit tag).
"""

import base64
import binascii
import hashlib
import os
import threading
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from . import config
from .errors import ConfigError, DecryptError

NONCE_SIZE = 12
TAG_SIZE = 16


def derive_key(secret: str) -> bytes:
    """64 hex chars or exactly 32 bytes are used as the key, anything else is hashed."""
    if not secret:
        raise ConfigError("CERT_ENCRYPTION_KEY is required")
    if len(secret) == 64:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass
    raw = secret.encode("utf-8")
    if len(raw) == 32:
        return raw
    return hashlib.sha256(raw).digest()


class SecretCodec:
    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ConfigError("secret codec key must be 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        cipher, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return ":".join([
            base64.b64encode(nonce).decode("ascii"),
            base64.b64encode(tag).decode("ascii"),
            cipher.hex(),
        ])

    def decrypt(self, token: str) -> str:
        try:
            iv_b64, tag_b64, cipher_hex = token.split(":")
            nonce = base64.b64decode(iv_b64, validate=True)
            tag = base64.b64decode(tag_b64, validate=True)
            cipher = bytes.fromhex(cipher_hex)
        except (AttributeError, ValueError, binascii.Error) as exc:
            raise DecryptError("malformed encrypted secret") from exc
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise DecryptError("malformed encrypted secret")
        try:
            plain = self._aead.decrypt(nonce, cipher + tag, None)
        except InvalidTag as exc:
            raise DecryptError("encrypted secret failed authentication") from exc
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptError("decrypted secret is not valid text") from exc


_codec: Optional[SecretCodec] = None
_codec_lock = threading.Lock()


def get_codec() -> SecretCodec:
    global _codec
    with _codec_lock:
        if _codec is None:
            _codec = SecretCodec(derive_key(config.CERT_ENCRYPTION_KEY or ""))
        return _codec


def reset_codec():
    global _codec
    with _codec_lock:
        _codec = None

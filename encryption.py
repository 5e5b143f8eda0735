"""
encryption.py — At-rest sealing of file contents.

Each file gets its own AES-256-GCM key. The stored blob is nonce + ciphertext;
the key (base64) and a SHA-256 of the plaintext live in the files table.
"""
import base64
import binascii
import hashlib
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
KEY_BITS = 256


class DecryptionError(Exception):
    """The blob cannot be turned back into the plaintext that was stored."""


@dataclass(frozen=True)
class SealedBlob:
    blob: bytes
    key_b64: str
    checksum: str


def checksum_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def seal(data: bytes) -> SealedBlob:
    key = AESGCM.generate_key(bit_length=KEY_BITS)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, data, None)
    return SealedBlob(
        blob=nonce + ciphertext,
        key_b64=base64.b64encode(key).decode("utf-8"),
        checksum=checksum_of(data),  # of the plaintext
    )


def unseal(blob: bytes, key_b64: str, checksum: str = None) -> bytes:
    """Decrypt a sealed blob; when checksum is given the plaintext must match it."""
    try:
        aesgcm = AESGCM(base64.b64decode(key_b64))
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"unusable key: {e}")
    if len(blob) < NONCE_SIZE:
        raise DecryptionError("blob shorter than nonce")

    try:
        plaintext = aesgcm.decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)
    except InvalidTag:
        raise DecryptionError("authentication tag mismatch")

    if checksum is not None and checksum_of(plaintext) != checksum:
        raise DecryptionError("checksum mismatch")
    return plaintext

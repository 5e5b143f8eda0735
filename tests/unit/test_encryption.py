import base64

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from hypothesis import given, strategies as st

from encryption import NONCE_SIZE, DecryptionError, checksum_of, seal, unseal


def test_round_trip():
    sealed = seal(b"attack at dawn")

    assert b"attack at dawn" not in sealed.blob
    assert sealed.checksum == checksum_of(b"attack at dawn")
    assert unseal(sealed.blob, sealed.key_b64, sealed.checksum) == b"attack at dawn"


def test_each_file_gets_its_own_key():
    first = seal(b"same")
    second = seal(b"same")

    assert first.key_b64 != second.key_b64
    assert len(base64.b64decode(first.key_b64)) == 32


def test_wrong_key_fails():
    sealed = seal(b"data")
    other = base64.b64encode(AESGCM.generate_key(bit_length=256)).decode()

    with pytest.raises(DecryptionError):
        unseal(sealed.blob, other)


def test_tampered_blob_fails():
    blob = seal(b"data")
    tampered = blob.blob[:NONCE_SIZE] + bytes([blob.blob[NONCE_SIZE] ^ 1]) + blob.blob[NONCE_SIZE + 1:]

    with pytest.raises(DecryptionError):
        unseal(tampered, blob.key_b64)


def test_truncated_blob_fails():
    sealed = seal(b"data")

    with pytest.raises(DecryptionError):
        unseal(b"short", sealed.key_b64)


def test_unusable_key_fails():
    sealed = seal(b"data")

    with pytest.raises(DecryptionError):
        unseal(sealed.blob, base64.b64encode(b"too-short").decode())


def test_checksum_mismatch_fails():
    sealed = seal(b"data")

    with pytest.raises(DecryptionError):
        unseal(sealed.blob, sealed.key_b64, checksum_of(b"datA"))


@given(st.binary(max_size=2048))
def test_any_payload_survives(payload):
    sealed = seal(payload)

    assert unseal(sealed.blob, sealed.key_b64, sealed.checksum) == payload

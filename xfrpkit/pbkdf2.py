"""PBKDF2-HMAC key derivation over SHA-1, SHA-256 and SHA-512."""

from __future__ import annotations

import hmac
from typing import Union

__all__ = [
    "pbkdf2_hmac",
    "pbkdf2_hmac_sha1",
    "pbkdf2_hmac_sha256",
    "pbkdf2_hmac_sha512",
]

BytesLike = Union[bytes, bytearray, memoryview]

_SUPPORTED_HASHES = ("sha1", "sha256", "sha512")
_MAX_UINT32 = 0xFFFFFFFF


def _as_bytes(value: BytesLike, name: str) -> bytes:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise TypeError(f"{name} must be bytes-like, not {type(value).__name__}")
    return bytes(value)


def _derive_block(
    prf: "hmac.HMAC", salt: bytes, counter: int, iterations: int
) -> bytes:
    """Compute one output block: U_1 xor U_2 xor ... xor U_c."""
    ctx = prf.copy()
    ctx.update(salt)
    ctx.update(counter.to_bytes(4, "big"))
    u = ctx.digest()
    result = int.from_bytes(u, "big")
    for _ in range(iterations - 1):
        ctx = prf.copy()
        ctx.update(u)
        u = ctx.digest()
        result ^= int.from_bytes(u, "big")
    return result.to_bytes(len(u), "big")


def pbkdf2_hmac(
    hash_name: str,
    password: BytesLike,
    salt: BytesLike,
    iterations: int,
    length: int,
) -> bytes:
    """Derive ``length`` bytes with PBKDF2 using HMAC over ``hash_name``.

    ``hash_name`` is one of ``"sha1"``, ``"sha256"`` or ``"sha512"``.
    ``iterations`` and ``length`` must both be positive.
    """
    if hash_name not in _SUPPORTED_HASHES:
        raise ValueError(
            f"unsupported hash {hash_name!r}; expected one of {', '.join(_SUPPORTED_HASHES)}"
        )
    key = _as_bytes(password, "password")
    salt_bytes = _as_bytes(salt, "salt")
    if not isinstance(iterations, int) or isinstance(iterations, bool):
        raise TypeError("iterations must be an integer")
    if not isinstance(length, int) or isinstance(length, bool):
        raise TypeError("length must be an integer")
    if not 1 <= iterations <= _MAX_UINT32:
        raise ValueError("iterations must be between 1 and 2**32 - 1")
    if length < 1:
        raise ValueError("length must be positive")

    # Long keys are hashed and short keys zero-padded by HMAC itself,
    # so the keyed state can be prepared once and copied per round.
    prf = hmac.new(key, digestmod=hash_name)
    digest_size = prf.digest_size
    blocks_needed = -(-length // digest_size)
    if blocks_needed > _MAX_UINT32:
        raise ValueError("requested length is too large")

    derived = b"".join(
        _derive_block(prf, salt_bytes, counter, iterations)
        for counter in range(1, blocks_needed + 1)
    )
    return derived[:length]


def pbkdf2_hmac_sha1(
    password: BytesLike, salt: BytesLike, iterations: int, length: int
) -> bytes:
    """PBKDF2-HMAC-SHA1."""
    return pbkdf2_hmac("sha1", password, salt, iterations, length)


def pbkdf2_hmac_sha256(
    password: BytesLike, salt: BytesLike, iterations: int, length: int
) -> bytes:
    """PBKDF2-HMAC-SHA256."""
    return pbkdf2_hmac("sha256", password, salt, iterations, length)


def pbkdf2_hmac_sha512(
    password: BytesLike, salt: BytesLike, iterations: int, length: int
) -> bytes:
    """PBKDF2-HMAC-SHA512."""
    return pbkdf2_hmac("sha512", password, salt, iterations, length)
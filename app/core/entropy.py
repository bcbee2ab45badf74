"""
Entropy source for sign-in and replay nonces.

Random strings are drawn with rejection sampling so every charset symbol is
equally likely: bytes at or above the largest multiple of the charset size that
fits in a byte are discarded instead of being folded back with a modulo.
"""

import math
import secrets

from app.core.errors import EntropyUnavailable, InvalidCharset

ALPHANUMERIC = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

NONCE_ENTROPY_BITS = 96
MIN_NONCE_LENGTH = 8


def random_bytes(length: int) -> bytes:
    """Return *length* bytes from the operating system CSPRNG."""
    if length < 0:
        raise ValueError("length must be non-negative")
    try:
        return secrets.token_bytes(length)
    except NotImplementedError as exc:
        raise EntropyUnavailable("System random byte generator is not available.") from exc


def _check_charset(charset: str) -> None:
    if len(charset) < 2:
        raise InvalidCharset("random_string charset is too short")
    if len(charset) > 256:
        raise InvalidCharset("random_string charset is too long")


def random_string(length: int, charset: str = ALPHANUMERIC) -> str:
    """
    Generate a random string of *length* symbols drawn uniformly from *charset*.

    Args:
        length: Number of symbols to produce (0 gives an empty string)
        charset: 2 to 256 distinct symbols

    Raises:
        InvalidCharset: charset size out of range
        EntropyUnavailable: no secure random source
    """
    _check_charset(charset)
    if length < 0:
        raise ValueError("length must be non-negative")

    chars_len = len(charset)
    max_byte = 256 - (256 % chars_len)
    out: list[str] = []
    remaining = length
    while remaining > 0:
        buf = bytearray(random_bytes(math.ceil(remaining * 256 / max_byte)))
        for value in buf:
            if remaining == 0:
                break
            if value < max_byte:
                out.append(charset[value % chars_len])
                remaining -= 1
        # scrub the scratch buffer
        buf[:] = bytes(len(buf))
    return "".join(out)


def random_string_for_entropy(bits: int, charset: str = ALPHANUMERIC) -> str:
    """Random string with at least *bits* bits of entropy over *charset*."""
    _check_charset(charset)
    length = math.ceil(bits / math.log2(len(charset)))
    return random_string(length, charset)


def create_nonce(bits: int = NONCE_ENTROPY_BITS) -> str:
    """Alphanumeric nonce for sign-in challenges and QR replay protection."""
    nonce = random_string_for_entropy(bits)
    if len(nonce) < MIN_NONCE_LENGTH:
        raise EntropyUnavailable("Error during nonce creation: Invalid nonce generated.")
    return nonce

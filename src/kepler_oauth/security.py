"""Security primitives for kepler-oauth.

Provides secure randomness, base64url encoding without padding,
constant-time comparison, a secret holder type, and helpers that
keep sensitive values out of logs.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import re
import secrets
from collections.abc import Callable, Mapping
from typing import Any

from kepler_oauth.exceptions import InvalidUsageError, MalformedEncodingError

# Source of cryptographically secure bytes; injectable for deterministic tests
RandomSource = Callable[[int], bytes]

_BASE64URL_RE = re.compile(r"[A-Za-z0-9_-]*")

DEFAULT_SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "token",
        "secret",
        "password",
        "client_secret",
        "code_verifier",
        "verifier",
        "code",
        "authorization",
    }
)


def random_bytes(n: int) -> bytes:
    """Return ``n`` cryptographically secure random bytes.

    Args:
        n: Number of bytes, must be positive

    Returns:
        Random bytes from the operating system's CSPRNG

    Raises:
        ValueError: If n is not positive
    """
    if n <= 0:
        msg = "n must be a positive number of bytes"
        raise ValueError(msg)
    return secrets.token_bytes(n)


def base64url_encode(data: bytes) -> str:
    """Encode bytes as base64url (RFC 4648 section 5) without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text: str) -> bytes:
    """Decode unpadded base64url text.

    Args:
        text: Base64url string without "=" padding

    Returns:
        Decoded bytes

    Raises:
        MalformedEncodingError: On padding, characters outside the
            base64url alphabet, or an impossible length
    """
    if not _BASE64URL_RE.fullmatch(text):
        msg = "Invalid base64url alphabet or padding"
        raise MalformedEncodingError(msg)
    if len(text) % 4 == 1:
        msg = "Invalid base64url length"
        raise MalformedEncodingError(msg)

    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as e:
        raise MalformedEncodingError(f"Invalid base64url value: {e}") from e


def constant_time_equals(a: str | bytes | None, b: str | bytes | None) -> bool:
    """Compare two values in constant time to prevent timing attacks.

    Args:
        a: First value to compare
        b: Second value to compare

    Returns:
        True if both values are equal, False otherwise
    """
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    a_bytes = a.encode("utf-8") if isinstance(a, str) else bytes(a)
    b_bytes = b.encode("utf-8") if isinstance(b, str) else bytes(b)
    return hmac.compare_digest(a_bytes, b_bytes)


class Secret:
    """Holder for a sensitive string value.

    The value lives in a mutable buffer that ``discard()`` overwrites
    with zeros. The representation never contains the value.

    Python strings are immutable: every string returned by ``reveal()``
    is a copy outside the holder's control and is only reclaimed by
    the garbage collector. Keep revealed values short-lived.
    """

    __slots__ = ("_buffer", "_discarded")

    def __init__(self, value: str | bytes | bytearray) -> None:
        data = value.encode("utf-8") if isinstance(value, str) else value
        self._buffer = bytearray(data)
        self._discarded = False

    def reveal(self) -> str:
        """Return the cleartext value.

        Raises:
            InvalidUsageError: If the secret was discarded
        """
        return self.reveal_bytes().decode("utf-8")

    def reveal_bytes(self) -> bytes:
        """Return the cleartext value as bytes.

        Raises:
            InvalidUsageError: If the secret was discarded
        """
        if self._discarded:
            msg = "Secret has been discarded"
            raise InvalidUsageError(msg)
        return bytes(self._buffer)

    def copy(self) -> Secret:
        """Return an independent holder with the same value."""
        return Secret(self.reveal_bytes())

    def discard(self) -> None:
        """Overwrite the backing buffer with zeros."""
        self._buffer[:] = bytes(len(self._buffer))
        self._discarded = True

    @property
    def discarded(self) -> bool:
        return self._discarded

    def __len__(self) -> int:
        return len(self._buffer)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        if self._discarded or other._discarded:
            return False
        return hmac.compare_digest(bytes(self._buffer), bytes(other._buffer))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._discarded:
            return "Secret(<discarded>)"
        return "Secret('**********')"

    __str__ = __repr__

    def __del__(self) -> None:
        # __init__ may have failed before the buffer existed
        if getattr(self, "_buffer", None) is not None:
            self.discard()


def redact(value: str | Secret | None) -> str:
    """Redact a potentially sensitive value for safe logging.

    Args:
        value: The value to redact

    Returns:
        "***" if value is non-empty, "<empty>" if empty/None
    """
    if value is None or len(value) == 0:
        return "<empty>"
    return "***"


def mask_sensitive_data(
    data: Mapping[str, Any], sensitive_keys: frozenset[str] | set[str] | None = None
) -> dict[str, Any]:
    """Mask sensitive data in a mapping for logging.

    Args:
        data: Mapping potentially containing sensitive data
        sensitive_keys: Keys to mask (uses defaults if not provided)

    Returns:
        Copy of the mapping with sensitive values masked
    """
    if sensitive_keys is None:
        sensitive_keys = DEFAULT_SENSITIVE_KEYS

    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            result[key] = mask_sensitive_data(value, sensitive_keys)
        elif isinstance(value, Secret) or key.lower() in sensitive_keys:
            result[key] = "***"
        else:
            result[key] = value

    return result

"""CSRF state parameter for the authorization redirect.

The state is an opaque random value sent with the authorization request
and expected back, unchanged, on the redirect callback (RFC 6749
section 10.12).
"""

from __future__ import annotations

from dataclasses import dataclass

from kepler_oauth.security import (
    RandomSource,
    base64url_encode,
    constant_time_equals,
    random_bytes,
)

# 128 bits of entropy
MIN_STATE_BYTES = 16


@dataclass(frozen=True)
class CsrfState:
    """Opaque, URL-safe anti-forgery token."""

    value: str

    def __str__(self) -> str:
        return self.value


def generate_state(
    nbytes: int = MIN_STATE_BYTES,
    random_source: RandomSource = random_bytes,
) -> CsrfState:
    """Generate a fresh state token.

    Args:
        nbytes: Number of random bytes (at least 16)
        random_source: Source of random bytes

    Returns:
        Base64url-encoded CsrfState

    Raises:
        ValueError: If nbytes < 16
    """
    if nbytes < MIN_STATE_BYTES:
        msg = f"nbytes must be at least {MIN_STATE_BYTES} for sufficient entropy"
        raise ValueError(msg)

    return CsrfState(base64url_encode(random_source(nbytes)))


def verify_state(expected: CsrfState, received: str | None) -> bool:
    """Compare the returned state with the one that was sent.

    Args:
        expected: State sent with the authorization request
        received: State found on the callback

    Returns:
        True only on an exact match
    """
    if not received:
        return False
    return constant_time_equals(expected.value, received)

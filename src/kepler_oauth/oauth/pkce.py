"""PKCE (Proof Key for Code Exchange) implementation.

Implements RFC 7636 for secure OAuth 2.0 Authorization Code flows.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum

from kepler_oauth.security import (
    RandomSource,
    Secret,
    base64url_encode,
    constant_time_equals,
    random_bytes,
)

# RFC 7636 section 4.1: 32 octets encode to 43 characters, 96 to 128
MIN_VERIFIER_BYTES = 32
MAX_VERIFIER_BYTES = 96

# code-verifier = 43*128unreserved
_VERIFIER_RE = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


class PkceMethod(str, Enum):
    """Code challenge transformation methods."""

    S256 = "S256"
    PLAIN = "plain"


def derive_challenge(verifier: str, method: PkceMethod = PkceMethod.S256) -> str:
    """Compute the code challenge for a verifier.

    Args:
        verifier: The code verifier string
        method: Transformation to apply

    Returns:
        BASE64URL(SHA256(verifier)) for S256, the verifier itself for plain
    """
    if PkceMethod(method) is PkceMethod.PLAIN:
        return verifier
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url_encode(digest)


def is_valid_verifier(verifier: str) -> bool:
    """Check a verifier against the RFC 7636 grammar."""
    return isinstance(verifier, str) and _VERIFIER_RE.fullmatch(verifier) is not None


def generate_code_verifier(
    nbytes: int = MIN_VERIFIER_BYTES,
    random_source: RandomSource = random_bytes,
) -> Secret:
    """Generate a cryptographically random code verifier.

    Args:
        nbytes: Number of random bytes, between 32 and 96
        random_source: Source of random bytes

    Returns:
        Secret holding a 43-128 character URL-safe verifier

    Raises:
        ValueError: If nbytes is outside 32..96
    """
    if not MIN_VERIFIER_BYTES <= nbytes <= MAX_VERIFIER_BYTES:
        msg = (
            f"nbytes must be between {MIN_VERIFIER_BYTES} and "
            f"{MAX_VERIFIER_BYTES} to keep the verifier within 43-128 characters"
        )
        raise ValueError(msg)

    return Secret(base64url_encode(random_source(nbytes)))


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The challenge is re-derived on construction, so a pair whose
    challenge does not match its verifier cannot exist.

    Attributes:
        verifier: Secret sent with the token request
        challenge: Derived value sent with the authorization request
        method: Transformation linking the two
    """

    verifier: Secret
    challenge: str
    method: PkceMethod = PkceMethod.S256

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", PkceMethod(self.method))
        expected = derive_challenge(self.verifier.reveal(), self.method)
        if not constant_time_equals(expected, self.challenge):
            msg = "code challenge does not match the verifier"
            raise ValueError(msg)

    @classmethod
    def from_verifier(
        cls,
        verifier: str | Secret,
        method: PkceMethod = PkceMethod.S256,
    ) -> PKCEPair:
        """Build a pair from an existing verifier.

        Args:
            verifier: A 43-128 character unreserved string
            method: Transformation to apply

        Raises:
            ValueError: If the verifier violates the RFC 7636 grammar
        """
        secret = verifier if isinstance(verifier, Secret) else Secret(verifier)
        revealed = secret.reveal()
        if not is_valid_verifier(revealed):
            msg = "code verifier must be 43-128 unreserved characters"
            raise ValueError(msg)
        return cls(verifier=secret, challenge=derive_challenge(revealed, method), method=method)

    def discard(self) -> None:
        """Zeroize the verifier; the challenge stays readable."""
        self.verifier.discard()


def generate(
    method: PkceMethod = PkceMethod.S256,
    *,
    nbytes: int = MIN_VERIFIER_BYTES,
    random_source: RandomSource = random_bytes,
) -> PKCEPair:
    """Create a new PKCE verifier/challenge pair.

    Args:
        method: Challenge method
        nbytes: Number of random bytes for the verifier
        random_source: Source of random bytes

    Returns:
        PKCEPair with verifier and matching challenge
    """
    verifier = generate_code_verifier(nbytes, random_source)
    return PKCEPair(
        verifier=verifier,
        challenge=derive_challenge(verifier.reveal(), method),
        method=method,
    )


def verify(pair: PKCEPair, candidate_verifier: str | Secret | None) -> bool:
    """Check that a verifier reproduces the pair's challenge.

    Args:
        pair: The stored pair
        candidate_verifier: Verifier to check

    Returns:
        True if the candidate derives the stored challenge
    """
    if isinstance(candidate_verifier, Secret):
        if candidate_verifier.discarded:
            return False
        candidate_verifier = candidate_verifier.reveal()
    if not is_valid_verifier(candidate_verifier):  # type: ignore[arg-type]
        return False
    candidate_challenge = derive_challenge(candidate_verifier, pair.method)  # type: ignore[arg-type]
    return constant_time_equals(candidate_challenge, pair.challenge)

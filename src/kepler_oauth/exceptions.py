"""Exceptions raised by the OAuth flow engine.

Protocol failures derive from FlowError. The flow never raises them at
its caller; they are carried inside Failed outputs so the embedding
application can render them. InvalidUsageError is the exception that is
always raised: it means the host program broke the engine's contract.
"""

from __future__ import annotations

from typing import Any


class InvalidUsageError(RuntimeError):
    """Raised when the engine is driven out of order or after it finished."""


class FlowError(Exception):
    """Base exception for OAuth protocol failures.

    Attributes:
        kind: Stable machine-readable tag for the failure class
        message: Human-readable error message
    """

    kind = "flow_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload without secrets."""
        return {"kind": self.kind, "message": self.message}


class MissingParameterError(FlowError):
    """Raised when a required parameter is absent from a callback or response."""

    kind = "missing_parameter"

    def __init__(self, parameter: str, message: str | None = None) -> None:
        super().__init__(message or f"Missing required parameter: {parameter}")
        self.parameter = parameter

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["parameter"] = self.parameter
        return payload


class MalformedEncodingError(FlowError):
    """Raised when a base64url value is structurally invalid."""

    kind = "malformed_encoding"


class MalformedResponseError(FlowError):
    """Raised when a callback or token response cannot be interpreted.

    Attributes:
        status_code: HTTP status code (if the input was an HTTP response)
        body: Raw response body (if available)
    """

    kind = "malformed_response"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: bytes | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["status_code"] = self.status_code
        return payload


class InvalidStateError(FlowError):
    """Raised when the returned state does not match the one sent.

    Signals a possible CSRF attempt or a hijacked redirect; the flow
    cannot recover from it.
    """

    kind = "invalid_state"

    def __init__(self, message: str = "State parameter mismatch") -> None:
        super().__init__(message)


class PkceMismatchError(FlowError):
    """Raised when a verifier does not reproduce the stored challenge."""

    kind = "pkce_mismatch"

    def __init__(self, message: str = "PKCE verifier does not match the challenge") -> None:
        super().__init__(message)


class AuthorizationDeniedError(FlowError):
    """Raised when the authorization server redirects back with an error.

    Attributes:
        error: Error code exactly as returned (unknown codes included)
        description: Optional error_description
        uri: Optional error_uri
    """

    kind = "authorization_denied"

    def __init__(
        self,
        error: str,
        description: str | None = None,
        uri: str | None = None,
    ) -> None:
        super().__init__(f"Authorization denied: {error}")
        self.error = error
        self.description = description
        self.uri = uri

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            {
                "error": self.error,
                "error_description": self.description,
                "error_uri": self.uri,
            }
        )
        return payload


class OAuthError(FlowError):
    """Raised when the token endpoint returns an RFC 6749 error object.

    Attributes:
        error: Error code exactly as returned
        description: Optional error_description
        uri: Optional error_uri
        status_code: HTTP status of the token response
    """

    kind = "oauth_error"

    def __init__(
        self,
        error: str,
        description: str | None = None,
        uri: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"Token endpoint error: {error}")
        self.error = error
        self.description = description
        self.uri = uri
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update(
            {
                "error": self.error,
                "error_description": self.description,
                "error_uri": self.uri,
                "status_code": self.status_code,
            }
        )
        return payload


class TransportError(FlowError):
    """Wraps a failure reported by the transport collaborator.

    The original exception is kept untouched in ``original`` and as
    ``__cause__``; the engine does not interpret it.
    """

    kind = "transport_error"

    def __init__(self, original: BaseException, message: str | None = None) -> None:
        super().__init__(message or f"Transport failure: {original}")
        self.original = original
        self.__cause__ = original

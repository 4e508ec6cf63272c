"""Data model for the Authorization Code grant.

Request and response types exchanged between the flow engine and its
caller, plus the transport descriptors the caller turns into real I/O.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
from urllib.parse import quote_plus, urlencode, urlsplit, urlunsplit

from kepler_oauth.oauth.pkce import PkceMethod
from kepler_oauth.security import Secret

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


class AuthorizationErrorCode(str, Enum):
    """Error codes of the authorization endpoint (RFC 6749 section 4.1.2.1)."""

    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    ACCESS_DENIED = "access_denied"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    INVALID_SCOPE = "invalid_scope"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"


class TokenErrorCode(str, Enum):
    """Error codes of the token endpoint (RFC 6749 section 5.2)."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_SCOPE = "invalid_scope"


def _lookup(enum_cls: type[Enum], value: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class ClientConfig:
    """Registered client and authorization server endpoints.

    Attributes:
        client_id: OAuth client identifier
        authorization_endpoint: Authorization endpoint URI
        token_endpoint: Token endpoint URI
        redirect_uri: Registered redirect/callback URI
        scopes: Requested scopes, ordered and without duplicates
        client_secret: Client secret for confidential clients
        pkce_method: PKCE challenge method
    """

    client_id: str
    authorization_endpoint: str
    token_endpoint: str
    redirect_uri: str
    scopes: tuple[str, ...] = ()
    client_secret: Secret | None = field(default=None, repr=False)
    pkce_method: PkceMethod = PkceMethod.S256

    def __post_init__(self) -> None:
        required = [
            ("client_id", self.client_id),
            ("authorization_endpoint", self.authorization_endpoint),
            ("token_endpoint", self.token_endpoint),
            ("redirect_uri", self.redirect_uri),
        ]
        missing = [name for name, value in required if not value]
        if missing:
            msg = f"Client configuration is missing required fields: {', '.join(missing)}"
            raise ValueError(msg)

        scopes = self.scopes.split() if isinstance(self.scopes, str) else self.scopes
        object.__setattr__(self, "scopes", tuple(dict.fromkeys(s for s in scopes if s)))
        object.__setattr__(self, "pkce_method", PkceMethod(self.pkce_method))

    @property
    def scope(self) -> str | None:
        """Space-delimited scope string, or None when no scope is requested."""
        return " ".join(self.scopes) if self.scopes else None

    @property
    def is_confidential(self) -> bool:
        return self.client_secret is not None


@dataclass(frozen=True)
class HttpRequest:
    """Request descriptor handed to the transport collaborator."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict, repr=False)
    body: bytes | None = field(default=None, repr=False)


@dataclass(frozen=True)
class HttpResponse:
    """Response descriptor returned by the transport collaborator."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization endpoint request (RFC 6749 section 4.1.1, RFC 7636 section 4.3)."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scope: str | None
    state: str
    code_challenge: str
    code_challenge_method: PkceMethod
    response_type: str = "code"

    def params(self) -> dict[str, str]:
        """Return the query parameters in their canonical order."""
        params = {
            "response_type": self.response_type,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
        }
        if self.scope:
            params["scope"] = self.scope
        params["state"] = self.state
        params["code_challenge"] = self.code_challenge
        params["code_challenge_method"] = PkceMethod(self.code_challenge_method).value
        return params

    @property
    def url(self) -> str:
        """Authorization URI for the user agent.

        A query component already present on the endpoint is retained.
        """
        parts = urlsplit(self.authorization_endpoint)
        query = urlencode(self.params())
        if parts.query:
            query = f"{parts.query}&{query}"
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))

    def to_http_request(self) -> HttpRequest:
        return HttpRequest(method="GET", url=self.url)


@dataclass(frozen=True)
class AuthorizationGrant:
    """Successful authorization callback."""

    code: str = field(repr=False)
    state: str


@dataclass(frozen=True)
class AuthorizationDenial:
    """Authorization callback carrying an error.

    Unknown error codes are kept verbatim in ``error``.
    """

    error: str
    error_description: str | None = None
    error_uri: str | None = None
    state: str | None = None

    @property
    def known_error(self) -> AuthorizationErrorCode | None:
        result: AuthorizationErrorCode | None = _lookup(AuthorizationErrorCode, self.error)
        return result


AuthorizationResponse = Union[AuthorizationGrant, AuthorizationDenial]


@dataclass(frozen=True)
class TokenRequest:
    """Access token request (RFC 6749 section 4.1.3, RFC 7636 section 4.5).

    When a client secret is configured the client authenticates with
    HTTP Basic and ``client_id`` is left out of the form body.
    """

    token_endpoint: str
    code: str = field(repr=False)
    redirect_uri: str
    client_id: str
    code_verifier: Secret = field(repr=False)
    client_secret: Secret | None = field(default=None, repr=False)
    grant_type: str = "authorization_code"

    def form(self) -> dict[str, str]:
        """Return the form fields. Exposes the code and the verifier."""
        form = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
        }
        if self.client_secret is None:
            form["client_id"] = self.client_id
        form["code_verifier"] = self.code_verifier.reveal()
        return form

    def headers(self) -> dict[str, str]:
        """Return the request headers. Exposes the client secret."""
        headers = {
            "Content-Type": FORM_CONTENT_TYPE,
            "Accept": JSON_CONTENT_TYPE,
        }
        if self.client_secret is not None:
            # RFC 6749 section 2.3.1: both parts are form-encoded first
            userpass = (
                f"{quote_plus(self.client_id)}:"
                f"{quote_plus(self.client_secret.reveal())}"
            )
            credentials = base64.b64encode(userpass.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {credentials}"
        return headers

    def body(self) -> bytes:
        return urlencode(self.form()).encode("ascii")

    def to_http_request(self) -> HttpRequest:
        return HttpRequest(
            method="POST",
            url=self.token_endpoint,
            headers=self.headers(),
            body=self.body(),
        )

    def discard(self) -> None:
        """Zeroize the secrets this request holds."""
        self.code_verifier.discard()
        if self.client_secret is not None:
            self.client_secret.discard()


@dataclass
class TokenResponse:
    """Successful access token response (RFC 6749 section 5.1).

    Attributes:
        access_token: The issued access token
        token_type: Token type, e.g. "Bearer"
        expires_in: Lifetime in seconds, None when the server omitted it
        refresh_token: Optional refresh token
        scope: Granted scope, when returned
    """

    access_token: Secret
    token_type: str
    expires_in: int | None = None
    refresh_token: Secret | None = None
    scope: str | None = None

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(self.scope.split()) if self.scope else ()

    def to_dict(self, reveal: bool = False) -> dict[str, Any]:
        """Serialize the response.

        Args:
            reveal: Include the cleartext tokens instead of masks
        """

        def _render(secret: Secret | None) -> str | None:
            if secret is None:
                return None
            return secret.reveal() if reveal else "***"

        return {
            "access_token": _render(self.access_token),
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": _render(self.refresh_token),
            "scope": self.scope,
        }

    def discard(self) -> None:
        self.access_token.discard()
        if self.refresh_token is not None:
            self.refresh_token.discard()


@dataclass(frozen=True)
class OAuthErrorBody:
    """Error object returned by the token endpoint (RFC 6749 section 5.2)."""

    error: str
    error_description: str | None = None
    error_uri: str | None = None

    @property
    def known_error(self) -> TokenErrorCode | None:
        result: TokenErrorCode | None = _lookup(TokenErrorCode, self.error)
        return result

"""Token endpoint request builder and response parser.

Implements the access token request of RFC 6749 section 4.1.3 with the
PKCE verifier of RFC 7636 section 4.5, and the interpretation of the
responses described in RFC 6749 sections 5.1 and 5.2.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from kepler_oauth.exceptions import MalformedResponseError, OAuthError
from kepler_oauth.logging_config import get_logger
from kepler_oauth.oauth.models import ClientConfig, OAuthErrorBody, TokenRequest, TokenResponse
from kepler_oauth.security import Secret, redact

logger = get_logger(__name__)


class _TokenPayload(BaseModel):
    """Successful token response body."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(min_length=1)
    token_type: str = Field(min_length=1)
    # JSON booleans and numeric strings are not lifetimes
    expires_in: StrictInt | None = Field(default=None, ge=0)
    refresh_token: str | None = None
    scope: str | None = None


class _ErrorPayload(BaseModel):
    """Error response body."""

    model_config = ConfigDict(extra="allow")

    error: str = Field(min_length=1)
    error_description: str | None = None
    error_uri: str | None = None


def _describe(error: ValidationError) -> str:
    """Summarize a validation error without echoing input values."""
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'body'}: {item['msg']}"
        for item in error.errors()
    )


def build_token_request(client: ClientConfig, code: str, verifier: Secret) -> TokenRequest:
    """Assemble the authorization code exchange request.

    The request owns copies of the verifier and client secret, so
    discarding it leaves the flow and client configuration intact.

    Args:
        client: Client configuration
        code: Authorization code from the callback
        verifier: PKCE code verifier generated for this flow

    Returns:
        TokenRequest ready to be sent to the token endpoint
    """
    request = TokenRequest(
        token_endpoint=client.token_endpoint,
        code=code,
        redirect_uri=client.redirect_uri,
        client_id=client.client_id,
        code_verifier=verifier.copy(),
        client_secret=client.client_secret.copy() if client.client_secret is not None else None,
    )
    logger.debug(
        "Built token request for client %s (code: %s, auth: %s)",
        client.client_id,
        redact(code),
        "basic" if client.client_secret is not None else "none",
    )
    return request


def _load_json(body: bytes | str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


def parse_error_body(payload: Any) -> OAuthErrorBody | None:
    """Interpret a decoded JSON value as an RFC 6749 error object.

    Returns:
        OAuthErrorBody, or None if the value is not a valid error object
    """
    if not isinstance(payload, dict):
        return None
    try:
        parsed = _ErrorPayload.model_validate(payload)
    except ValidationError:
        return None
    return OAuthErrorBody(
        error=parsed.error,
        error_description=parsed.error_description,
        error_uri=parsed.error_uri,
    )


def parse_token_response(status: int, body: bytes | str) -> TokenResponse:
    """Interpret the token endpoint's response.

    Args:
        status: HTTP status code
        body: Raw response body

    Returns:
        TokenResponse on success

    Raises:
        OAuthError: If the server returned an error object
        MalformedResponseError: If the response cannot be interpreted
    """
    payload = _load_json(body)
    raw = body.encode("utf-8") if isinstance(body, str) else bytes(body)

    if not 200 <= status < 300:
        error_body = parse_error_body(payload)
        if error_body is None:
            raise MalformedResponseError(
                "Token endpoint returned an unparseable error response",
                status_code=status,
                body=raw,
            )
        logger.debug("Token endpoint returned error %s (status %d)", error_body.error, status)
        raise OAuthError(
            error_body.error,
            description=error_body.error_description,
            uri=error_body.error_uri,
            status_code=status,
        )

    # Success bodies may carry tokens, so they are not attached to errors
    if not isinstance(payload, dict):
        raise MalformedResponseError("Token response is not a JSON object", status_code=status)

    if "error" in payload:
        error_body = parse_error_body(payload)
        if error_body is None:
            raise MalformedResponseError("Token response has an invalid error member", status_code=status)
        raise OAuthError(
            error_body.error,
            description=error_body.error_description,
            uri=error_body.error_uri,
            status_code=status,
        )

    try:
        parsed = _TokenPayload.model_validate(payload)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Invalid token response: {_describe(e)}", status_code=status
        ) from None

    logger.debug(
        "Parsed token response (type: %s, expires_in: %s, refresh token: %s)",
        parsed.token_type,
        parsed.expires_in if parsed.expires_in is not None else "N/A",
        "yes" if parsed.refresh_token else "no",
    )

    return TokenResponse(
        access_token=Secret(parsed.access_token),
        token_type=parsed.token_type,
        expires_in=parsed.expires_in,
        refresh_token=Secret(parsed.refresh_token) if parsed.refresh_token else None,
        scope=parsed.scope,
    )

"""Authorization endpoint request builder and redirect callback parser."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from urllib.parse import parse_qs, urlsplit

from kepler_oauth.exceptions import MalformedResponseError, MissingParameterError
from kepler_oauth.logging_config import get_logger
from kepler_oauth.oauth.models import (
    AuthorizationDenial,
    AuthorizationGrant,
    AuthorizationRequest,
    AuthorizationResponse,
    ClientConfig,
)
from kepler_oauth.oauth.pkce import PKCEPair
from kepler_oauth.oauth.state import CsrfState

logger = get_logger(__name__)

CallbackParams = Mapping[str, str | Sequence[str]]


def build_authorization_request(
    client: ClientConfig,
    pkce: PKCEPair,
    state: CsrfState,
) -> AuthorizationRequest:
    """Assemble the authorization request for a client.

    Args:
        client: Client configuration
        pkce: PKCE pair generated for this flow
        state: CSRF state generated for this flow

    Returns:
        AuthorizationRequest ready to be rendered as a URI
    """
    request = AuthorizationRequest(
        authorization_endpoint=client.authorization_endpoint,
        client_id=client.client_id,
        redirect_uri=client.redirect_uri,
        scope=client.scope,
        state=state.value,
        code_challenge=pkce.challenge,
        code_challenge_method=pkce.method,
    )
    logger.debug(
        "Built authorization request for client %s (scope: %s, method: %s)",
        client.client_id,
        client.scope or "N/A",
        pkce.method.value,
    )
    return request


def callback_param(params: CallbackParams, name: str) -> str | None:
    """Return a parameter that must occur at most once."""
    value = params.get(name)
    if value is None:
        return None

    if not isinstance(value, str):
        if not isinstance(value, (list, tuple)):
            raise MalformedResponseError(f"Parameter {name} is not a string")
        values = list(value)
        if not values:
            return None
        # RFC 6749 section 3.1: parameters must not be included more than once
        if len(values) > 1:
            raise MalformedResponseError(f"Parameter {name} is repeated")
        value = values[0]
        if not isinstance(value, str):
            raise MalformedResponseError(f"Parameter {name} is not a string")

    return value


def parse_authorization_response(params: CallbackParams) -> AuthorizationResponse:
    """Parse the query parameters of the redirect callback.

    Accepts plain string values or the list values produced by
    ``urllib.parse.parse_qs``. The state is returned as received; it is
    compared by the flow, which knows what was sent.

    Args:
        params: Callback query parameters

    Returns:
        AuthorizationGrant on success, AuthorizationDenial on an error callback

    Raises:
        MissingParameterError: If code or state is absent or empty
        MalformedResponseError: If a parameter is repeated or not a string
    """
    error = callback_param(params, "error")
    if error is not None:
        if not error:
            raise MalformedResponseError("Parameter error is empty")
        return AuthorizationDenial(
            error=error,
            error_description=callback_param(params, "error_description") or None,
            error_uri=callback_param(params, "error_uri") or None,
            state=callback_param(params, "state") or None,
        )

    code = callback_param(params, "code")
    if not code:
        raise MissingParameterError("code")

    state = callback_param(params, "state")
    if not state:
        raise MissingParameterError("state")

    return AuthorizationGrant(code=code, state=state)


def redirect_params(uri: str) -> dict[str, list[str]]:
    """Extract the query parameters of a redirected URI.

    Raises:
        MalformedResponseError: If the query cannot be parsed
    """
    try:
        query = urlsplit(uri.strip()).query
    except ValueError as e:
        raise MalformedResponseError(f"Unparseable redirect URI: {e}") from e
    # Empty segments such as a trailing "&" are skipped
    return parse_qs(query, keep_blank_values=True)


def parse_redirect_uri(uri: str) -> AuthorizationResponse:
    """Parse a full redirected URI, e.g. one pasted by a user.

    Args:
        uri: The URI the user agent was redirected to

    Returns:
        Parsed authorization response

    Raises:
        MalformedResponseError: If the query cannot be parsed
        MissingParameterError: If code or state is absent
    """
    return parse_authorization_response(redirect_params(uri))

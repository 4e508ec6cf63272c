"""Resumable Authorization Code flow with PKCE.

The flow never performs I/O. Each call returns the next thing the
caller must do (open a URL, send a token request) or the final result,
and the caller resumes the flow with whatever the outside world sent
back. Between two calls the flow holds no lock and does no work, so a
suspended flow can be snapshotted, stored, and restored in another
process.

Stages::

    START -> AWAITING_REDIRECT -> AWAITING_AUTHORIZATION_RESULT
          -> AWAITING_TOKEN_RESPONSE -> SUCCEEDED | FAILED

A flow instance is single-use and not safe for concurrent use.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, NoReturn, Union

from kepler_oauth.exceptions import (
    AuthorizationDeniedError,
    FlowError,
    InvalidStateError,
    InvalidUsageError,
    PkceMismatchError,
    TransportError,
)
from kepler_oauth.logging_config import get_logger
from kepler_oauth.oauth import pkce
from kepler_oauth.oauth.authorization import (
    CallbackParams,
    build_authorization_request,
    callback_param,
    parse_authorization_response,
)
from kepler_oauth.oauth.models import (
    AuthorizationDenial,
    AuthorizationRequest,
    ClientConfig,
    HttpRequest,
    HttpResponse,
    TokenRequest,
    TokenResponse,
)
from kepler_oauth.oauth.pkce import MAX_VERIFIER_BYTES, MIN_VERIFIER_BYTES, PKCEPair, PkceMethod
from kepler_oauth.oauth.state import MIN_STATE_BYTES, CsrfState, generate_state, verify_state
from kepler_oauth.oauth.token import build_token_request, parse_token_response
from kepler_oauth.security import RandomSource, random_bytes

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


class FlowStage(str, Enum):
    """Stages of the authorization code flow."""

    START = "start"
    AWAITING_REDIRECT = "awaiting_redirect"
    AWAITING_AUTHORIZATION_RESULT = "awaiting_authorization_result"
    AWAITING_TOKEN_RESPONSE = "awaiting_token_response"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStage.SUCCEEDED, FlowStage.FAILED)


@dataclass(frozen=True)
class AuthorizationRedirect:
    """Send the user agent to ``url``, then call ``redirect_dispatched()``."""

    request: AuthorizationRequest

    @property
    def url(self) -> str:
        return self.request.url


@dataclass(frozen=True)
class TokenExchange:
    """Send ``request`` to the token endpoint and resume with the response."""

    request: TokenRequest

    def to_http_request(self) -> HttpRequest:
        return self.request.to_http_request()


@dataclass(frozen=True)
class Succeeded:
    """The flow obtained an access token."""

    token: TokenResponse


@dataclass(frozen=True)
class Failed:
    """The flow ended with a protocol failure."""

    error: FlowError

    def raise_error(self) -> NoReturn:
        raise self.error


@dataclass(frozen=True)
class TransportFailed:
    """The token request never produced a response.

    The flow is still waiting for a token response; send ``retry`` or
    call ``abandon()``.
    """

    error: TransportError
    retry: TokenExchange


FlowOutput = Union[AuthorizationRedirect, TokenExchange, Succeeded, Failed, TransportFailed]


class AuthorizationCodeFlow:
    """OAuth 2.0 Authorization Code flow with PKCE, driven by its caller.

    Typical use::

        flow = AuthorizationCodeFlow(client)
        redirect = flow.begin()
        # open redirect.url in a browser
        flow.redirect_dispatched()
        step = flow.resume_authorization(callback_params)
        if isinstance(step, TokenExchange):
            response = send(step.to_http_request())
            result = flow.resume_token_response(response)
    """

    def __init__(
        self,
        client: ClientConfig,
        *,
        random_source: RandomSource = random_bytes,
        verifier_bytes: int = MIN_VERIFIER_BYTES,
        state_bytes: int = MIN_STATE_BYTES,
    ) -> None:
        """Initialize a flow in the START stage.

        Args:
            client: Client configuration, owned by this flow
            random_source: Source of random bytes for the verifier and state
            verifier_bytes: Random bytes behind the PKCE verifier (32..96)
            state_bytes: Random bytes behind the CSRF state (at least 16)

        Raises:
            ValueError: If an entropy size is out of range
        """
        if not MIN_VERIFIER_BYTES <= verifier_bytes <= MAX_VERIFIER_BYTES:
            msg = f"verifier_bytes must be between {MIN_VERIFIER_BYTES} and {MAX_VERIFIER_BYTES}"
            raise ValueError(msg)
        if state_bytes < MIN_STATE_BYTES:
            msg = f"state_bytes must be at least {MIN_STATE_BYTES}"
            raise ValueError(msg)

        self._client = client
        self._random_source = random_source
        self._verifier_bytes = verifier_bytes
        self._state_bytes = state_bytes

        self._stage = FlowStage.START
        self._pkce: PKCEPair | None = None
        self._csrf_state: CsrfState | None = None
        self._code: str | None = None
        self._error: Exception | None = None

    @property
    def client(self) -> ClientConfig:
        return self._client

    @property
    def stage(self) -> FlowStage:
        return self._stage

    @property
    def is_terminal(self) -> bool:
        return self._stage.is_terminal

    @property
    def csrf_state(self) -> CsrfState | None:
        """State sent with the authorization request, once begun."""
        return self._csrf_state

    @property
    def code_challenge(self) -> str | None:
        return self._pkce.challenge if self._pkce is not None else None

    @property
    def error(self) -> Exception | None:
        """Failure that ended the flow, if any."""
        return self._error

    # -- transitions -------------------------------------------------------

    def begin(self) -> AuthorizationRedirect:
        """Start the flow.

        Generates the PKCE pair and CSRF state and returns the
        authorization request the user agent must visit.

        Raises:
            InvalidUsageError: If the flow was already started
        """
        self._expect(FlowStage.START, "begin")

        self._pkce = pkce.generate(
            self._client.pkce_method,
            nbytes=self._verifier_bytes,
            random_source=self._random_source,
        )
        self._csrf_state = generate_state(self._state_bytes, self._random_source)
        request = build_authorization_request(self._client, self._pkce, self._csrf_state)

        self._move(FlowStage.AWAITING_REDIRECT)
        return AuthorizationRedirect(request)

    def redirect_dispatched(self) -> None:
        """Record that the user agent was sent to the authorization URL.

        Raises:
            InvalidUsageError: If called out of order
        """
        self._expect(FlowStage.AWAITING_REDIRECT, "redirect_dispatched")
        self._move(FlowStage.AWAITING_AUTHORIZATION_RESULT)

    def resume_authorization(self, params: CallbackParams) -> TokenExchange | Failed:
        """Resume with the redirect callback's query parameters.

        A returned state that differs from the one sent fails the flow
        with InvalidStateError before anything else is looked at.

        Args:
            params: Callback query parameters

        Returns:
            TokenExchange to perform, or Failed

        Raises:
            InvalidUsageError: If called out of order
        """
        self._expect(FlowStage.AWAITING_AUTHORIZATION_RESULT, "resume_authorization")
        if self._pkce is None or self._csrf_state is None:
            raise InvalidUsageError("Flow has no PKCE pair or state to check against")

        try:
            received_state = callback_param(params, "state")
            if received_state and not verify_state(self._csrf_state, received_state):
                raise InvalidStateError()

            response = parse_authorization_response(params)
            if not verify_state(self._csrf_state, response.state):
                raise InvalidStateError()

            if isinstance(response, AuthorizationDenial):
                raise AuthorizationDeniedError(
                    response.error,
                    description=response.error_description,
                    uri=response.error_uri,
                )

            if not pkce.verify(self._pkce, self._pkce.verifier):
                raise PkceMismatchError()
        except FlowError as e:
            return self._fail(e)

        self._code = response.code
        exchange = self._token_exchange()
        self._move(FlowStage.AWAITING_TOKEN_RESPONSE)
        return exchange

    def resume_token_response(self, response: HttpResponse) -> Succeeded | Failed:
        """Resume with the token endpoint's HTTP response.

        Args:
            response: Status, headers and body returned by the transport

        Returns:
            Succeeded with the token response, or Failed

        Raises:
            InvalidUsageError: If called out of order
        """
        self._expect(FlowStage.AWAITING_TOKEN_RESPONSE, "resume_token_response")

        try:
            token = parse_token_response(response.status, response.body)
        except FlowError as e:
            return self._fail(e)

        self._finish(FlowStage.SUCCEEDED)
        logger.info(
            "Authorization code flow succeeded for client %s (scope: %s)",
            self._client.client_id,
            token.scope or "N/A",
        )
        return Succeeded(token)

    def resume_transport_error(self, error: BaseException) -> TransportFailed:
        """Resume with a failure reported by the transport.

        The flow keeps waiting for a token response. The returned
        TransportFailed carries a fresh copy of the token request.

        Args:
            error: Exception raised while sending the token request

        Raises:
            InvalidUsageError: If called out of order
        """
        self._expect(FlowStage.AWAITING_TOKEN_RESPONSE, "resume_transport_error")

        wrapped = error if isinstance(error, TransportError) else TransportError(error)
        logger.warning(
            "Token request for client %s failed in transport: %s",
            self._client.client_id,
            type(wrapped.original).__name__,
        )
        return TransportFailed(error=wrapped, retry=self._token_exchange())

    def abandon(self) -> None:
        """Discard the flow; its secrets are zeroized.

        Has no external effect and does nothing on a terminal flow.
        """
        if self._stage.is_terminal:
            return
        logger.debug("Abandoning flow for client %s at %s", self._client.client_id, self._stage.value)
        self._finish(FlowStage.FAILED)

    # -- suspension --------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Export the state needed to resume this flow elsewhere.

        The snapshot contains the PKCE verifier and, once the callback
        was processed, the authorization code in cleartext. Store it
        encrypted (see EncryptedFileFlowStore).

        Raises:
            InvalidUsageError: If the flow is terminal
        """
        if self._stage.is_terminal:
            msg = f"Cannot snapshot a {self._stage.value} flow"
            raise InvalidUsageError(msg)

        data: dict[str, Any] = {
            "version": SNAPSHOT_VERSION,
            "stage": self._stage.value,
            "client_id": self._client.client_id,
        }
        if self._pkce is not None:
            data["pkce"] = {
                "verifier": self._pkce.verifier.reveal(),
                "method": self._pkce.method.value,
            }
        if self._csrf_state is not None:
            data["state"] = self._csrf_state.value
        if self._code is not None:
            data["code"] = self._code
        return data

    @classmethod
    def restore(
        cls,
        snapshot: Mapping[str, Any],
        client: ClientConfig,
        *,
        random_source: RandomSource = random_bytes,
        verifier_bytes: int = MIN_VERIFIER_BYTES,
        state_bytes: int = MIN_STATE_BYTES,
    ) -> AuthorizationCodeFlow:
        """Rebuild a suspended flow from a snapshot.

        Args:
            snapshot: Value returned by ``snapshot()``
            client: Client configuration the flow was started with

        Returns:
            Flow in the snapshot's stage

        Raises:
            InvalidUsageError: If the snapshot is malformed, terminal, or
                belongs to another client
        """
        flow = cls(
            client,
            random_source=random_source,
            verifier_bytes=verifier_bytes,
            state_bytes=state_bytes,
        )

        try:
            if snapshot["version"] != SNAPSHOT_VERSION:
                msg = f"unsupported snapshot version {snapshot['version']!r}"
                raise ValueError(msg)

            stage = FlowStage(snapshot["stage"])
            if stage.is_terminal:
                msg = f"stage {stage.value} cannot be resumed"
                raise ValueError(msg)

            if snapshot["client_id"] != client.client_id:
                msg = "snapshot belongs to another client"
                raise ValueError(msg)

            if stage is not FlowStage.START:
                pkce_data = snapshot["pkce"]
                flow._pkce = PKCEPair.from_verifier(
                    pkce_data["verifier"], PkceMethod(pkce_data["method"])
                )
                state_value = snapshot["state"]
                if not isinstance(state_value, str) or not state_value:
                    msg = "state must be a non-empty string"
                    raise ValueError(msg)
                flow._csrf_state = CsrfState(state_value)

            if stage is FlowStage.AWAITING_TOKEN_RESPONSE:
                code = snapshot["code"]
                if not isinstance(code, str) or not code:
                    msg = "code must be a non-empty string"
                    raise ValueError(msg)
                flow._code = code
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidUsageError(f"Malformed flow snapshot: {e}") from None

        flow._stage = stage
        logger.debug("Restored flow for client %s at %s", client.client_id, stage.value)
        return flow

    # -- internals ---------------------------------------------------------

    def _token_exchange(self) -> TokenExchange:
        if self._pkce is None or self._code is None:
            raise InvalidUsageError("Flow has no PKCE pair or code to exchange")
        return TokenExchange(build_token_request(self._client, self._code, self._pkce.verifier))

    def _expect(self, expected: FlowStage, operation: str) -> None:
        if self._stage.is_terminal:
            msg = f"Cannot call {operation}() on a {self._stage.value} flow"
            raise InvalidUsageError(msg)

        if self._stage is not expected:
            current = self._stage
            error = InvalidUsageError(
                f"Cannot call {operation}() while {current.value}; expected {expected.value}"
            )
            self._error = error
            self._finish(FlowStage.FAILED)
            logger.error("Flow for client %s used out of order: %s", self._client.client_id, error)
            raise error

    def _move(self, stage: FlowStage) -> None:
        logger.debug(
            "Flow for client %s: %s -> %s",
            self._client.client_id,
            self._stage.value,
            stage.value,
        )
        self._stage = stage

    def _fail(self, error: FlowError) -> Failed:
        self._error = error
        self._finish(FlowStage.FAILED)
        logger.warning(
            "Authorization code flow failed for client %s: %s",
            self._client.client_id,
            error.kind,
        )
        return Failed(error)

    def _finish(self, stage: FlowStage) -> None:
        self._move(stage)
        if self._pkce is not None:
            self._pkce.discard()
        self._code = None

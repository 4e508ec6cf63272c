"""Tests for the httpx transport and the exchange helpers."""

from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest
import respx
from httpx import Response

from kepler_oauth.exceptions import OAuthError, TransportError
from kepler_oauth.oauth.flow import (
    AuthorizationCodeFlow,
    Failed,
    FlowStage,
    Succeeded,
    TokenExchange,
    TransportFailed,
)
from kepler_oauth.oauth.models import ClientConfig, HttpRequest
from kepler_oauth.transport import (
    AsyncHttpxTransport,
    HttpxTransport,
    async_exchange_code,
    exchange_code,
)

TOKEN_URL = "https://auth.example.com/token"
TOKEN_JSON = {"access_token": "tok123", "token_type": "Bearer", "expires_in": 3600}


def _awaiting_token(client: ClientConfig) -> tuple[AuthorizationCodeFlow, TokenExchange]:
    flow = AuthorizationCodeFlow(client)
    flow.begin()
    flow.redirect_dispatched()
    assert flow.csrf_state is not None
    step = flow.resume_authorization({"code": "XYZ", "state": flow.csrf_state.value})
    assert isinstance(step, TokenExchange)
    return flow, step


class TestHttpxTransport:
    """Tests for HttpxTransport class."""

    @respx.mock
    def test_send(self) -> None:
        """Test a request descriptor is sent as-is."""
        route = respx.post(TOKEN_URL).mock(return_value=Response(200, json=TOKEN_JSON))

        with HttpxTransport() as transport:
            response = transport.send(
                HttpRequest(
                    method="POST",
                    url=TOKEN_URL,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    body=b"a=1",
                )
            )

        assert route.called
        sent = route.calls.last.request
        assert sent.content == b"a=1"
        assert sent.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert response.status == 200
        assert response.is_success
        assert b"tok123" in response.body

    @respx.mock
    def test_error_status_returned(self) -> None:
        """Test non-2xx statuses are returned, not raised."""
        respx.post(TOKEN_URL).mock(return_value=Response(400, json={"error": "invalid_grant"}))

        with HttpxTransport() as transport:
            response = transport.send(HttpRequest(method="POST", url=TOKEN_URL))

        assert response.status == 400
        assert not response.is_success

    @respx.mock
    def test_connection_error(self) -> None:
        """Test network failures become TransportError."""
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("refused"))

        with HttpxTransport() as transport, pytest.raises(TransportError) as exc_info:
            transport.send(HttpRequest(method="POST", url=TOKEN_URL))

        assert isinstance(exc_info.value.original, httpx.ConnectError)
        assert exc_info.value.__cause__ is exc_info.value.original

    def test_external_client_not_closed(self) -> None:
        """Test a caller-provided client stays open."""
        client = httpx.Client()
        transport = HttpxTransport(http_client=client)
        transport.close()

        assert not client.is_closed
        client.close()


class TestExchangeCode:
    """Tests for exchange_code function."""

    @respx.mock
    def test_success(self, public_client: ClientConfig) -> None:
        """Test a successful exchange completes the flow."""
        route = respx.post(TOKEN_URL).mock(return_value=Response(200, json=TOKEN_JSON))
        flow, step = _awaiting_token(public_client)

        with HttpxTransport() as transport:
            result = exchange_code(flow, step, transport)

        assert isinstance(result, Succeeded)
        assert result.token.access_token.reveal() == "tok123"
        assert flow.stage is FlowStage.SUCCEEDED

        form = parse_qs(route.calls.last.request.content.decode())
        assert form["code"] == ["XYZ"]
        assert form["client_id"] == ["abc"]
        assert step.request.code_verifier.discarded

    @respx.mock
    def test_oauth_error(self, public_client: ClientConfig) -> None:
        """Test an error response fails the flow."""
        respx.post(TOKEN_URL).mock(return_value=Response(400, json={"error": "invalid_grant"}))
        flow, step = _awaiting_token(public_client)

        with HttpxTransport() as transport:
            result = exchange_code(flow, step, transport)

        assert isinstance(result, Failed)
        assert isinstance(result.error, OAuthError)
        assert result.error.error == "invalid_grant"
        assert flow.stage is FlowStage.FAILED

    @respx.mock
    def test_transport_failure_then_retry(self, public_client: ClientConfig) -> None:
        """Test a transport failure leaves the flow resumable."""
        route = respx.post(TOKEN_URL)
        route.side_effect = [httpx.ReadTimeout("slow"), Response(200, json=TOKEN_JSON)]
        flow, step = _awaiting_token(public_client)

        with HttpxTransport() as transport:
            first = exchange_code(flow, step, transport)
            assert isinstance(first, TransportFailed)
            assert flow.stage is FlowStage.AWAITING_TOKEN_RESPONSE

            second = exchange_code(flow, first.retry, transport)

        assert isinstance(second, Succeeded)
        assert route.call_count == 2


class TestAsyncExchangeCode:
    """Tests for async_exchange_code function."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success(self, confidential_client: ClientConfig) -> None:
        """Test a successful asynchronous exchange."""
        route = respx.post(TOKEN_URL).mock(return_value=Response(200, json=TOKEN_JSON))
        flow, step = _awaiting_token(confidential_client)

        async with AsyncHttpxTransport() as transport:
            result = await async_exchange_code(flow, step, transport)

        assert isinstance(result, Succeeded)
        assert route.calls.last.request.headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_failure(self, public_client: ClientConfig) -> None:
        """Test network failures are reported, not raised."""
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("refused"))
        flow, step = _awaiting_token(public_client)

        async with AsyncHttpxTransport() as transport:
            result = await async_exchange_code(flow, step, transport)

        assert isinstance(result, TransportFailed)
        assert isinstance(result.error.original, httpx.ConnectError)
        assert flow.stage is FlowStage.AWAITING_TOKEN_RESPONSE

"""Tests for the token request builder and response parser."""

from __future__ import annotations

import base64
import json
from urllib.parse import parse_qs

import pytest

from kepler_oauth.exceptions import MalformedResponseError, OAuthError
from kepler_oauth.oauth.models import ClientConfig, TokenErrorCode
from kepler_oauth.oauth.token import (
    build_token_request,
    parse_error_body,
    parse_token_response,
)
from kepler_oauth.security import Secret

VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


class TestBuildTokenRequest:
    """Tests for build_token_request function."""

    def test_public_client(self, public_client: ClientConfig) -> None:
        """Test a public client sends client_id in the form."""
        request = build_token_request(public_client, "XYZ", Secret(VERIFIER))
        http = request.to_http_request()

        assert http.method == "POST"
        assert http.url == "https://auth.example.com/token"
        assert http.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert http.headers["Accept"] == "application/json"
        assert "Authorization" not in http.headers
        assert parse_qs(http.body.decode()) == {
            "grant_type": ["authorization_code"],
            "code": ["XYZ"],
            "redirect_uri": ["https://app/cb"],
            "client_id": ["abc"],
            "code_verifier": [VERIFIER],
        }

    def test_confidential_client(self, confidential_client: ClientConfig) -> None:
        """Test a confidential client authenticates with HTTP Basic."""
        request = build_token_request(confidential_client, "XYZ", Secret(VERIFIER))
        http = request.to_http_request()

        expected = base64.b64encode(b"test-client-id:test-client-secret").decode()
        assert http.headers["Authorization"] == f"Basic {expected}"
        form = parse_qs(http.body.decode())
        assert "client_id" not in form
        assert "client_secret" not in form

    def test_basic_credentials_form_encoded(self) -> None:
        """Test reserved characters in credentials are form-encoded."""
        client = ClientConfig(
            client_id="my client",
            authorization_endpoint="https://auth.example.com/authorize",
            token_endpoint="https://auth.example.com/token",
            redirect_uri="https://app/cb",
            client_secret=Secret("p:ss"),
        )
        request = build_token_request(client, "XYZ", Secret(VERIFIER))

        encoded = request.headers()["Authorization"].removeprefix("Basic ")
        assert base64.b64decode(encoded) == b"my+client:p%3Ass"

    def test_owns_copies(self, confidential_client: ClientConfig) -> None:
        """Test discarding the request leaves the inputs intact."""
        verifier = Secret(VERIFIER)
        request = build_token_request(confidential_client, "XYZ", verifier)
        request.discard()

        assert request.code_verifier.discarded
        assert verifier.reveal() == VERIFIER
        assert confidential_client.client_secret is not None
        assert confidential_client.client_secret.reveal() == "test-client-secret"

    def test_repr_hides_secrets(self, confidential_client: ClientConfig) -> None:
        """Test secrets and the code are not in repr."""
        request = build_token_request(confidential_client, "XYZ-code", Secret(VERIFIER))
        text = repr(request) + repr(request.to_http_request())

        assert VERIFIER not in text
        assert "test-client-secret" not in text
        assert "XYZ-code" not in text
        assert "Basic" not in text


class TestParseTokenResponse:
    """Tests for parse_token_response function."""

    def test_success(self) -> None:
        """Test a minimal successful response."""
        body = json.dumps(
            {"access_token": "tok123", "token_type": "Bearer", "expires_in": 3600}
        ).encode()
        token = parse_token_response(200, body)

        assert token.access_token.reveal() == "tok123"
        assert token.token_type == "Bearer"
        assert token.expires_in == 3600
        assert token.refresh_token is None
        assert token.scope is None

    def test_full_response(self) -> None:
        """Test optional members and extra members."""
        body = json.dumps(
            {
                "access_token": "tok123",
                "token_type": "Bearer",
                "refresh_token": "ref456",
                "scope": "read write",
                "id_token": "ignored",
            }
        )
        token = parse_token_response(200, body)

        assert token.refresh_token is not None
        assert token.refresh_token.reveal() == "ref456"
        assert token.scopes == ("read", "write")
        assert token.expires_in is None

    def test_to_dict_masks(self) -> None:
        """Test serialization masks tokens unless revealed."""
        token = parse_token_response(
            200, b'{"access_token": "tok123", "token_type": "Bearer", "refresh_token": "r"}'
        )

        assert token.to_dict()["access_token"] == "***"
        assert token.to_dict()["refresh_token"] == "***"
        assert token.to_dict(reveal=True)["access_token"] == "tok123"
        assert "tok123" not in repr(token)

    def test_discard(self) -> None:
        """Test discarding zeroizes both tokens."""
        token = parse_token_response(
            200, b'{"access_token": "tok123", "token_type": "Bearer", "refresh_token": "r"}'
        )
        token.discard()

        assert token.access_token.discarded
        assert token.refresh_token is not None and token.refresh_token.discarded

    def test_error_response(self) -> None:
        """Test an RFC 6749 error object."""
        body = b'{"error": "invalid_grant", "error_description": "Code expired"}'

        with pytest.raises(OAuthError) as exc_info:
            parse_token_response(400, body)

        error = exc_info.value
        assert error.error == "invalid_grant"
        assert error.description == "Code expired"
        assert error.uri is None
        assert error.status_code == 400
        assert error.kind == "oauth_error"

    def test_error_object_on_success_status(self) -> None:
        """Test an error object is an error whatever the status."""
        with pytest.raises(OAuthError, match="invalid_client"):
            parse_token_response(200, b'{"error": "invalid_client"}')

    def test_unknown_error_code(self) -> None:
        """Test unknown error codes are preserved."""
        with pytest.raises(OAuthError) as exc_info:
            parse_token_response(400, b'{"error": "custom_error"}')
        assert exc_info.value.error == "custom_error"

    def test_unparseable_error(self) -> None:
        """Test a non-JSON error keeps status and body."""
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_token_response(502, b"<html>Bad Gateway</html>")

        assert exc_info.value.status_code == 502
        assert exc_info.value.body == b"<html>Bad Gateway</html>"
        assert str(exc_info.value).startswith("[502]")

    def test_invalid_json(self) -> None:
        """Test a 2xx non-JSON body."""
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_token_response(200, b"not json")
        assert exc_info.value.body is None

    def test_not_an_object(self) -> None:
        """Test a JSON value that is not an object."""
        with pytest.raises(MalformedResponseError):
            parse_token_response(200, b'["tok123"]')

    @pytest.mark.parametrize(
        "payload",
        [
            {"token_type": "Bearer"},
            {"access_token": "tok123"},
            {"access_token": "", "token_type": "Bearer"},
            {"access_token": "tok123", "token_type": "Bearer", "expires_in": -1},
            {"access_token": "tok123", "token_type": "Bearer", "expires_in": "soon"},
            {"access_token": "tok123", "token_type": "Bearer", "expires_in": "3600"},
            {"access_token": "tok123", "token_type": "Bearer", "expires_in": True},
            {"access_token": "tok123", "token_type": "Bearer", "expires_in": 3600.5},
            {"access_token": 5, "token_type": "Bearer"},
        ],
    )
    def test_invalid_members(self, payload: dict[str, object]) -> None:
        """Test missing or ill-typed members."""
        with pytest.raises(MalformedResponseError):
            parse_token_response(200, json.dumps(payload).encode())

    def test_error_does_not_echo_token(self) -> None:
        """Test validation errors never include token values."""
        body = json.dumps({"access_token": "tok123", "token_type": "Bearer", "expires_in": "x"})

        with pytest.raises(MalformedResponseError) as exc_info:
            parse_token_response(200, body)

        assert "tok123" not in str(exc_info.value)
        assert "expires_in" in str(exc_info.value)


class TestParseErrorBody:
    """Tests for parse_error_body function."""

    def test_known_error(self) -> None:
        """Test the error code maps to the enum."""
        body = parse_error_body({"error": "invalid_grant"})
        assert body is not None
        assert body.known_error is TokenErrorCode.INVALID_GRANT

    def test_not_an_error(self) -> None:
        """Test values that are not error objects."""
        assert parse_error_body(None) is None
        assert parse_error_body({"message": "oops"}) is None
        assert parse_error_body({"error": ""}) is None

"""Tests for the command-line interface."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

import pytest
import respx
from cryptography.fernet import Fernet
from httpx import Response
from typer.testing import CliRunner

from kepler_oauth import __version__
from kepler_oauth.cli import app
from kepler_oauth.logging_config import reset_logging
from kepler_oauth.oauth.state import CsrfState

if TYPE_CHECKING:
    from pathlib import Path

TOKEN_URL = "https://auth.example.com/token"
TOKEN_JSON = {"access_token": "tok123", "token_type": "Bearer", "expires_in": 3600}

runner = CliRunner()


@pytest.fixture
def oauth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Configure a public client through the environment."""
    monkeypatch.setenv("KEPLER_OAUTH_OAUTH_AUTHORIZATION_URL", "https://auth.example.com/authorize")
    monkeypatch.setenv("KEPLER_OAUTH_OAUTH_TOKEN_URL", TOKEN_URL)
    monkeypatch.setenv("KEPLER_OAUTH_OAUTH_CLIENT_ID", "abc")
    monkeypatch.setenv("KEPLER_OAUTH_OAUTH_REDIRECT_URI", "https://app/cb")
    monkeypatch.setenv("KEPLER_OAUTH_OAUTH_SCOPE", "read")


@pytest.fixture
def fixed_state(monkeypatch: pytest.MonkeyPatch) -> str:
    """Make every new flow use a known state."""
    monkeypatch.setattr(
        "kepler_oauth.oauth.flow.generate_state",
        lambda nbytes, random_source: CsrfState("fixed-state"),
    )
    return "fixed-state"


@pytest.fixture
def flow_store_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, oauth_env: None
) -> Path:
    """Configure an encrypted flow store through the environment."""
    path = tmp_path / "flows.enc"
    monkeypatch.setenv("KEPLER_OAUTH_FLOW_STORE_PATH", str(path))
    monkeypatch.setenv("KEPLER_OAUTH_FLOW_STORE_ENCRYPTION_KEY", Fernet.generate_key().decode())
    return path


class TestVersion:
    """Tests for version output."""

    def test_version_command(self) -> None:
        """Test the version command."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"kepler-oauth version {__version__}" in result.output

    def test_version_option(self) -> None:
        """Test the --version option."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestAuthorize:
    """Tests for the authorize command."""

    def test_missing_configuration(self) -> None:
        """Test a missing client configuration is reported."""
        result = runner.invoke(app, ["authorize", "--no-browser"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    @respx.mock
    def test_success(self, oauth_env: None, fixed_state: str) -> None:
        """Test the interactive flow prints a masked token."""
        route = respx.post(TOKEN_URL).mock(return_value=Response(200, json=TOKEN_JSON))

        result = runner.invoke(
            app,
            ["authorize", "--no-browser"],
            input=f"https://app/cb?code=XYZ&state={fixed_state}\n",
        )

        assert result.exit_code == 0, result.output
        assert "https://auth.example.com/authorize?response_type=code" in result.output
        assert '"token_type": "Bearer"' in result.output
        assert "tok123" not in result.output
        assert route.called

    @respx.mock
    def test_reveal(self, oauth_env: None, fixed_state: str) -> None:
        """Test --reveal prints the token."""
        respx.post(TOKEN_URL).mock(return_value=Response(200, json=TOKEN_JSON))

        result = runner.invoke(
            app,
            ["authorize", "--no-browser", "--reveal"],
            input=f"https://app/cb?code=XYZ&state={fixed_state}\n",
        )

        assert result.exit_code == 0, result.output
        assert "tok123" in result.output

    def test_state_mismatch(self, oauth_env: None, fixed_state: str) -> None:
        """Test a forged redirect is rejected before any request."""
        result = runner.invoke(
            app,
            ["authorize", "--no-browser"],
            input="https://app/cb?code=XYZ&state=forged\n",
        )

        assert result.exit_code == 1
        assert "invalid_state" in result.output

    def test_denied(self, oauth_env: None, fixed_state: str) -> None:
        """Test an error redirect is reported with its code."""
        result = runner.invoke(
            app,
            ["authorize", "--no-browser"],
            input=f"https://app/cb?error=access_denied&state={fixed_state}\n",
        )

        assert result.exit_code == 1
        assert "authorization_denied" in result.output
        assert "access_denied" in result.output

    @respx.mock
    def test_token_error(self, oauth_env: None, fixed_state: str) -> None:
        """Test a token endpoint error is reported with its code."""
        respx.post(TOKEN_URL).mock(return_value=Response(400, json={"error": "invalid_grant"}))

        result = runner.invoke(
            app,
            ["authorize", "--no-browser"],
            input=f"https://app/cb?code=XYZ&state={fixed_state}\n",
        )

        assert result.exit_code == 1
        assert "oauth_error" in result.output
        assert "invalid_grant" in result.output


class TestStartFinish:
    """Tests for the suspended start/finish commands."""

    def test_start_requires_store(self, oauth_env: None) -> None:
        """Test start refuses to run without a flow store."""
        result = runner.invoke(app, ["start"])

        assert result.exit_code == 1
        assert "flow_store_path" in result.output

    @respx.mock
    def test_start_then_finish(self, flow_store_env: Path) -> None:
        """Test a flow started by one invocation is finished by another."""
        respx.post(TOKEN_URL).mock(return_value=Response(200, json=TOKEN_JSON))

        started = runner.invoke(app, ["start"])
        assert started.exit_code == 0, started.output
        assert flow_store_env.exists()

        match = re.search(r"Flow ID: (\S+)", started.output)
        assert match is not None
        flow_id = match.group(1)
        url = next(line for line in started.output.splitlines() if line.startswith("https://"))
        state = parse_qs(urlsplit(url).query)["state"][0]

        reset_logging()
        finished = runner.invoke(
            app,
            ["finish", flow_id, f"https://app/cb?code=XYZ&state={state}", "--reveal"],
        )

        assert finished.exit_code == 0, finished.output
        assert "tok123" in finished.output

        reset_logging()
        again = runner.invoke(
            app, ["finish", flow_id, f"https://app/cb?code=XYZ&state={state}"]
        )
        assert again.exit_code == 1
        assert "Unknown flow" in again.output

    def test_finish_unknown_flow(self, flow_store_env: Path) -> None:
        """Test finishing a flow that was never started."""
        result = runner.invoke(app, ["finish", "nope", "https://app/cb?code=a&state=b"])

        assert result.exit_code == 1
        assert "Unknown flow" in result.output

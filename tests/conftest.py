"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator

import pytest

from kepler_oauth.config import ENV_PREFIX, Config, LogLevel
from kepler_oauth.logging_config import reset_logging
from kepler_oauth.oauth.models import ClientConfig
from kepler_oauth.security import Secret


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep settings from the host environment out of tests."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)
    yield
    reset_logging()


@pytest.fixture
def fixed_random() -> Callable[[int], bytes]:
    """Deterministic random source: 0x00, 0x01, ... repeating."""

    def _source(n: int) -> bytes:
        return bytes(i % 256 for i in range(n))

    return _source


@pytest.fixture
def public_client() -> ClientConfig:
    """Public client without a secret."""
    return ClientConfig(
        client_id="abc",
        authorization_endpoint="https://auth.example.com/authorize",
        token_endpoint="https://auth.example.com/token",
        redirect_uri="https://app/cb",
        scopes=("read", "write"),
    )


@pytest.fixture
def confidential_client() -> ClientConfig:
    """Confidential client authenticating with HTTP Basic."""
    return ClientConfig(
        client_id="test-client-id",
        authorization_endpoint="https://auth.example.com/authorize",
        token_endpoint="https://auth.example.com/token",
        redirect_uri="http://localhost:8000/oauth/callback",
        scopes=("read",),
        client_secret=Secret("test-client-secret"),
    )


@pytest.fixture
def oauth_config() -> Config:
    """Create a configuration with OAuth settings for testing."""
    return Config(
        app_name="OAuth Test Client",
        log_level=LogLevel.DEBUG,
        oauth_authorization_url="https://auth.example.com/authorize",
        oauth_token_url="https://auth.example.com/token",
        oauth_client_id="test-client-id",
        oauth_client_secret="test-client-secret",
        oauth_redirect_uri="http://localhost:8000/oauth/callback",
        oauth_scope="read write",
    )

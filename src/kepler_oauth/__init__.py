"""kepler-oauth.

A transport-agnostic engine for the OAuth 2.0 Authorization Code grant
with PKCE, plus an httpx transport and a command-line driver.
"""

__version__ = "0.1.0"

from kepler_oauth.config import Config, ConfigError, load_config
from kepler_oauth.exceptions import FlowError, InvalidUsageError
from kepler_oauth.oauth.flow import AuthorizationCodeFlow, FlowStage
from kepler_oauth.oauth.models import ClientConfig

__all__ = [
    "AuthorizationCodeFlow",
    "ClientConfig",
    "Config",
    "ConfigError",
    "FlowError",
    "FlowStage",
    "InvalidUsageError",
    "__version__",
    "load_config",
]

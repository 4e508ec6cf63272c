"""OAuth 2.0 Authorization Code grant with PKCE, without I/O.

Provides the resumable flow engine, the request builders and response
parsers it is made of, and storage for suspended flows.
"""

from kepler_oauth.oauth.authorization import (
    build_authorization_request,
    parse_authorization_response,
    parse_redirect_uri,
    redirect_params,
)
from kepler_oauth.oauth.flow import (
    AuthorizationCodeFlow,
    AuthorizationRedirect,
    Failed,
    FlowOutput,
    FlowStage,
    Succeeded,
    TokenExchange,
    TransportFailed,
)
from kepler_oauth.oauth.flow_store import (
    EncryptedFileFlowStore,
    FlowStore,
    FlowStoreError,
    InMemoryFlowStore,
    create_flow_store,
)
from kepler_oauth.oauth.models import (
    AuthorizationDenial,
    AuthorizationErrorCode,
    AuthorizationGrant,
    AuthorizationRequest,
    AuthorizationResponse,
    ClientConfig,
    HttpRequest,
    HttpResponse,
    OAuthErrorBody,
    TokenErrorCode,
    TokenRequest,
    TokenResponse,
)
from kepler_oauth.oauth.pkce import PKCEPair, PkceMethod
from kepler_oauth.oauth.state import CsrfState, generate_state, verify_state
from kepler_oauth.oauth.token import build_token_request, parse_token_response

__all__ = [
    "AuthorizationCodeFlow",
    "AuthorizationDenial",
    "AuthorizationErrorCode",
    "AuthorizationGrant",
    "AuthorizationRedirect",
    "AuthorizationRequest",
    "AuthorizationResponse",
    "ClientConfig",
    "CsrfState",
    "EncryptedFileFlowStore",
    "Failed",
    "FlowOutput",
    "FlowStage",
    "FlowStore",
    "FlowStoreError",
    "HttpRequest",
    "HttpResponse",
    "InMemoryFlowStore",
    "OAuthErrorBody",
    "PKCEPair",
    "PkceMethod",
    "Succeeded",
    "TokenErrorCode",
    "TokenExchange",
    "TokenRequest",
    "TokenResponse",
    "TransportFailed",
    "build_authorization_request",
    "build_token_request",
    "create_flow_store",
    "generate_state",
    "parse_authorization_response",
    "parse_redirect_uri",
    "parse_token_response",
    "redirect_params",
    "verify_state",
]

"""Command-line interface for kepler-oauth.

Drives the authorization code flow from a terminal: the user opens the
authorization URL, approves access, and pastes back the URI the browser
was redirected to.
"""

from __future__ import annotations

import asyncio
import json
import secrets
import sys
import webbrowser
from typing import Any

import typer

from kepler_oauth import __version__
from kepler_oauth.config import Config, ConfigError, load_config
from kepler_oauth.exceptions import FlowError, InvalidUsageError
from kepler_oauth.logging_config import get_logger, setup_logging
from kepler_oauth.oauth.authorization import redirect_params
from kepler_oauth.oauth.flow import (
    AuthorizationCodeFlow,
    Succeeded,
    TokenExchange,
    TransportFailed,
)
from kepler_oauth.oauth.flow_store import FlowStoreError, create_flow_store
from kepler_oauth.transport import HttpxTransport, exchange_code

app = typer.Typer(
    name="kepler-oauth",
    help="kepler-oauth - OAuth 2.0 authorization code flow with PKCE",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"kepler-oauth version {__version__}")
        typer.echo(f"Python {sys.version}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """kepler-oauth CLI."""


def _load(config_path: str | None, log_level: str | None) -> Config:
    cli_args: dict[str, Any] = {}
    if log_level:
        cli_args["log_level"] = log_level

    try:
        config = load_config(path=config_path, cli_args=cli_args)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None

    setup_logging(config)
    return config


def _new_flow(config: Config) -> AuthorizationCodeFlow:
    try:
        client = config.to_client_config()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None

    return AuthorizationCodeFlow(
        client,
        verifier_bytes=config.pkce_verifier_bytes,
        state_bytes=config.state_bytes,
    )


def _report_failure(error: FlowError) -> None:
    payload = error.to_payload()
    detail = payload.get("error")
    if detail:
        typer.echo(f"Authorization failed ({error.kind}): {detail}", err=True)
    else:
        typer.echo(f"Authorization failed ({error.kind}): {error}", err=True)
    description = payload.get("error_description")
    if description:
        typer.echo(f"  {description}", err=True)


def _complete(
    config: Config,
    flow: AuthorizationCodeFlow,
    redirected_uri: str,
    reveal: bool,
) -> None:
    """Resume a flow with the redirected URI and exchange the code."""
    try:
        params = redirect_params(redirected_uri)
    except FlowError as e:
        flow.abandon()
        _report_failure(e)
        raise typer.Exit(code=1) from None

    step = flow.resume_authorization(params)
    if not isinstance(step, TokenExchange):
        _report_failure(step.error)
        raise typer.Exit(code=1)

    with HttpxTransport(timeout=config.http_timeout) as transport:
        result = exchange_code(flow, step, transport)

    if isinstance(result, TransportFailed):
        flow.abandon()
        _report_failure(result.error)
        raise typer.Exit(code=1)
    if not isinstance(result, Succeeded):
        _report_failure(result.error)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(result.token.to_dict(reveal=reveal), indent=2))
    result.token.discard()


@app.command()
def authorize(
    config_path: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file (JSON or YAML)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
    no_browser: bool = typer.Option(
        False,
        "--no-browser",
        help="Print the authorization URL without opening a browser",
    ),
    reveal: bool = typer.Option(
        False,
        "--reveal",
        help="Print token values instead of masking them",
    ),
) -> None:
    """Run the whole flow interactively in one process."""
    config = _load(config_path, log_level)
    flow = _new_flow(config)

    redirect = flow.begin()
    typer.echo("Open this URL to authorize access:")
    typer.echo(redirect.url)
    if not no_browser:
        webbrowser.open(redirect.url)
    flow.redirect_dispatched()

    redirected_uri = typer.prompt("Redirected URI")
    _complete(config, flow, redirected_uri, reveal)


@app.command()
def start(
    config_path: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file (JSON or YAML)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
) -> None:
    """Begin a flow and suspend it in the flow store.

    Requires flow_store_path and flow_store_encryption_key, since the
    flow is resumed by a later `finish` invocation.
    """
    config = _load(config_path, log_level)
    if not config.flow_store_path or not config.flow_store_encryption_key:
        typer.echo(
            "Configuration error: start requires flow_store_path and flow_store_encryption_key",
            err=True,
        )
        raise typer.Exit(code=1)

    flow = _new_flow(config)
    redirect = flow.begin()
    flow.redirect_dispatched()

    flow_id = secrets.token_hex(8)
    store = create_flow_store(
        encryption_key=config.flow_store_encryption_key.get_secret_value(),
        file_path=config.flow_store_path,
    )
    try:
        asyncio.run(store.save(flow_id, flow.snapshot()))
    except FlowStoreError as e:
        typer.echo(f"Flow store error: {e}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        flow.abandon()

    get_logger(__name__).info("Suspended flow %s", flow_id)
    typer.echo(f"Flow ID: {flow_id}")
    typer.echo(redirect.url)


@app.command()
def finish(
    flow_id: str = typer.Argument(..., help="Flow ID printed by `start`"),
    redirected_uri: str = typer.Argument(..., help="URI the browser was redirected to"),
    config_path: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file (JSON or YAML)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
    reveal: bool = typer.Option(
        False,
        "--reveal",
        help="Print token values instead of masking them",
    ),
) -> None:
    """Resume a suspended flow and exchange the authorization code."""
    config = _load(config_path, log_level)
    if not config.flow_store_path or not config.flow_store_encryption_key:
        typer.echo(
            "Configuration error: finish requires flow_store_path and flow_store_encryption_key",
            err=True,
        )
        raise typer.Exit(code=1)

    try:
        client = config.to_client_config()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None

    store = create_flow_store(
        encryption_key=config.flow_store_encryption_key.get_secret_value(),
        file_path=config.flow_store_path,
    )
    try:
        snapshot = asyncio.run(store.pop(flow_id))
    except FlowStoreError as e:
        typer.echo(f"Flow store error: {e}", err=True)
        raise typer.Exit(code=1) from None

    if snapshot is None:
        typer.echo(f"Unknown flow: {flow_id}", err=True)
        raise typer.Exit(code=1)

    try:
        flow = AuthorizationCodeFlow.restore(
            snapshot,
            client,
            verifier_bytes=config.pkce_verifier_bytes,
            state_bytes=config.state_bytes,
        )
    except InvalidUsageError as e:
        typer.echo(f"Cannot resume flow {flow_id}: {e}", err=True)
        raise typer.Exit(code=1) from None

    _complete(config, flow, redirected_uri, reveal)


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"kepler-oauth version {__version__}")
    typer.echo(f"Python {sys.version}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

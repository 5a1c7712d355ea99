"""Click CLI for inspecting bridge configuration and webhook signatures."""

from __future__ import annotations

import json
import os
from typing import BinaryIO

import click
from pydantic import ValidationError

from botbridge.config import (
    HTTP_SERVER,
    ConfigError,
    ServerConfig,
    ServerDefinition,
    load_config_file,
    load_servers,
)
from botbridge.webhook.worker import sign_body

SERVERS: list[ServerDefinition] = [HTTP_SERVER]


@click.group()
def cli() -> None:
    """botbridge HTTP gateway tools."""


@cli.command("default-config")
def default_config() -> None:
    """Print a config file with every server at its defaults."""
    nodes = [{d.name: dict(d.default)} for d in SERVERS]
    click.echo(json.dumps({"servers": nodes}, indent=2))


@cli.command("servers")
def list_servers() -> None:
    """List the server kinds a config file may name."""
    for definition in SERVERS:
        click.echo(f"{definition.name}\t{definition.brief}")


@cli.command("show-config")
@click.option("--config", "config_path", default=None, help="Path to config JSON.")
def show_config(config_path: str | None) -> None:
    """Print every http server node after file and environment are merged."""
    raw = None
    if config_path:
        try:
            raw = load_config_file(config_path)
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from exc
    output = []
    for _, node in load_servers(SERVERS, raw, os.environ):
        try:
            server = ServerConfig.model_validate(node)
        except ValidationError as exc:
            raise click.ClickException(f"Invalid http server node: {exc}") from exc
        output.append(server.model_dump(mode="json", by_alias=True))
    click.echo(json.dumps(output, indent=2))


@cli.command()
@click.option("--secret", required=True, help="Destination secret.")
@click.argument("body_file", type=click.File("rb"))
def sign(secret: str, body_file: BinaryIO) -> None:
    """Print the X-Signature header expected for the body in BODY_FILE."""
    click.echo(sign_body(secret, body_file.read()))

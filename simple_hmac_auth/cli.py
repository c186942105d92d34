# Copyright 2025 ATP Project Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Simple HMAC Auth CLI
Compute canonical strings and signatures, or send a signed request.
"""

import json
import logging
from typing import List, Optional

import typer

from .canonicalize import canonicalize as build_canonical
from .client import Client
from .config import ClientConfig
from .exceptions import HMACAuthError, RequestError
from .sign import format_signature_header
from .sign import sign as sign_canonical

app = typer.Typer(name="simple-hmac-auth", help="Sign and send HMAC-authenticated HTTP requests", no_args_is_help=True)


def _parse_pairs(pairs: list[str] | None, separator: str, what: str) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs or []:
        if separator not in pair:
            raise typer.BadParameter(f"Expected {what} in the form key{separator}value, got {pair!r}")
        key, value = pair.split(separator, 1)
        parsed[key.strip()] = value.strip()
    return parsed


@app.command()
def canonicalize(
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path"),
    query: str = typer.Option("", "--query", "-q", help="Encoded query string, without '?'"),
    header: Optional[List[str]] = typer.Option(None, "--header", "-H", help="Header as 'name: value'"),
    body: Optional[str] = typer.Option(None, "--body", "-d", help="Raw request body"),
):
    """Print the canonical string for a request."""
    typer.echo(build_canonical(method, path, query, _parse_pairs(header, ":", "header"), body))


@app.command()
def sign(
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path"),
    secret: str = typer.Option(..., "--secret", "-s", envvar="SIMPLE_HMAC_AUTH_SECRET", help="Shared secret"),
    algorithm: str = typer.Option("sha256", "--algorithm", "-a", help="sha1, sha256 or sha512"),
    query: str = typer.Option("", "--query", "-q", help="Encoded query string, without '?'"),
    header: Optional[List[str]] = typer.Option(None, "--header", "-H", help="Header as 'name: value'"),
    body: Optional[str] = typer.Option(None, "--body", "-d", help="Raw request body"),
):
    """Print the signature header for a request."""
    canonical = build_canonical(method, path, query, _parse_pairs(header, ":", "header"), body)
    try:
        signature = sign_canonical(canonical, secret, algorithm)
    except HMACAuthError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(format_signature_header(algorithm, signature))


@app.command()
def request(
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path"),
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="Server origin"),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key"),
    secret: Optional[str] = typer.Option(None, "--secret", "-s", help="Shared secret; omit to send unsigned"),
    param: Optional[List[str]] = typer.Option(None, "--param", "-p", help="Query parameter as key=value"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Body; parsed as JSON when possible"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log the outgoing request"),
):
    """Send a signed request and print the response."""
    body = data
    if data is not None:
        try:
            body = json.loads(data)
        except ValueError:
            body = data

    try:
        config = ClientConfig.from_environment(
            api_key=api_key,
            secret=secret,
            base_url=base_url,
            log_requests=verbose or None,
            log_level="INFO" if verbose else None,
        )
        logging.basicConfig(level=config.log_level.upper())
        with Client(config=config) as client:
            response = client.request(method, path, query=_parse_pairs(param, "=", "parameter"), data=body)
    except RequestError as e:
        typer.echo(f"Error {e.status_code}: {e.message}", err=True)
        raise typer.Exit(1)
    except HMACAuthError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(response if isinstance(response, str) else json.dumps(response, indent=2))


def main():
    app()


if __name__ == "__main__":
    main()

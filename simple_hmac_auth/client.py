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
Simple HMAC Auth Client Implementation

Synchronous and asynchronous clients that sign every request they send.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urlsplit

import httpx

from .canonicalize import canonicalize, format_value
from .config import ClientConfig, apply_log_level
from .exceptions import AuthenticationError, BadInputError, NetworkError, RequestError, RequestTimeoutError
from .models import StructuredErrorBody, parse_error_body
from .server import http_date
from .sign import format_signature_header, sign

logger = logging.getLogger(__name__)

USER_AGENT = "simple-hmac-auth-python/1.0.0"

# Characters encodeURIComponent leaves alone, besides letters and digits
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def serialize_query_value(key: str, value: Any) -> str:
    """Primitives become their string form, everything else compact JSON."""
    if isinstance(value, (str, int, float)):
        return format_value(value)
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise BadInputError(f"Could not serialize parameter {key}: {e}", field=key) from e


def build_query_string(query: Mapping[str, Any] | None) -> str:
    """Sorted, percent-encoded query string without a leading '?'."""
    if not query:
        return ""

    pairs = []
    for key in sorted(query, key=str):
        value = serialize_query_value(key, query[key])
        pairs.append(f"{encode_uri_component(str(key))}={encode_uri_component(value)}")

    return "&".join(pairs)


def serialize_body(data: Any) -> tuple[str | bytes | None, bool]:
    """Return the body to send and whether it was JSON-encoded."""
    if data is None or isinstance(data, (str, bytes)):
        return data, False
    try:
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False), True
    except (TypeError, ValueError) as e:
        raise BadInputError(f"Could not serialize input data: {e}", field="data") from e


@dataclass(frozen=True)
class PreparedRequest:
    """Everything needed to put a signed request on the wire."""

    method: str
    url: str
    path: str
    query_string: str
    headers: dict[str, str]
    body: bytes | None
    canonical: str | None = None

    @property
    def signed(self) -> bool:
        return "signature" in self.headers


def prepare_request(
    config: ClientConfig,
    method: str | None,
    path: str | None,
    query: Mapping[str, Any] | None = None,
    data: Any = None,
    headers: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> PreparedRequest:
    """
    Build headers, query string, body and signature for a request.

    No network activity happens here, so every input problem surfaces before
    anything is sent.

    Args:
        config: Client configuration
        method: HTTP method
        path: Request path, already URL-encoded
        query: Query parameters
        data: Body; strings and bytes are sent as-is, anything else as JSON
        headers: Extra headers for this request
        now: Request time, defaults to the current time

    Returns:
        PreparedRequest

    Raises:
        BadInputError: If the method or path is missing or the input cannot be serialized
    """
    if not method:
        raise BadInputError("Request did not include HTTP method", field="method")

    if not path:
        raise BadInputError("Request did not include a path", field="path")

    method = method.upper()

    merged = {key.lower(): value for key, value in config.headers.items()}
    merged.update({key.lower(): value for key, value in (headers or {}).items()})

    merged["authorization"] = f"api-key {config.api_key}"
    merged[config.timestamp_header.lower()] = http_date(now or datetime.now(timezone.utc))

    query_string = build_query_string(query)

    body, is_json = serialize_body(data)
    if is_json and "content-type" not in merged:
        merged["content-type"] = "application/json"

    body_bytes = None
    if body is not None:
        body_bytes = body.encode("utf-8") if isinstance(body, str) else body
        merged["content-length"] = str(len(body_bytes))

    # Sign the full path the server will see, including any base URL prefix
    base = config.base_url.rstrip("/")
    full_path = urlsplit(base).path + path

    canonical = None
    if config.secret is not None:
        canonical = canonicalize(method, full_path, query_string, merged, body_bytes)
        signature = sign(canonical, config.secret, config.algorithm)
        merged["signature"] = format_signature_header(config.algorithm, signature)

    url = f"{base}{path}"
    if query_string:
        url = f"{url}?{query_string}"

    return PreparedRequest(
        method=method,
        url=url,
        path=full_path,
        query_string=query_string,
        headers=merged,
        body=body_bytes,
        canonical=canonical,
    )


def _parse_response(response: httpx.Response) -> Any:
    """Return the decoded JSON body, falling back to the raw text."""
    if not response.is_success:
        body = parse_error_body(response.text)
        message = body.message or f"Error {response.status_code}"
        details = dict(body.fields) if isinstance(body, StructuredErrorBody) else {}
        error_class = AuthenticationError if response.status_code == 401 else RequestError
        raise error_class(message, status_code=response.status_code, code=body.code, body=body, details=details)

    try:
        return response.json()
    except ValueError:
        return response.text


class _ClientBase:
    def __init__(
        self,
        api_key: str | None = None,
        secret: str | None = None,
        base_url: str | None = None,
        algorithm: str | None = None,
        timeout: float | None = None,
        config: ClientConfig | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key sent in the authorization header
            secret: Shared secret; requests are sent unsigned without one
            base_url: Origin of the server, e.g. https://api.example.com
            algorithm: HMAC algorithm (sha1, sha256, sha512)
            timeout: Request timeout in seconds
            config: Optional configuration object; explicit parameters win
        """
        overrides = {
            "api_key": api_key,
            "secret": secret,
            "base_url": base_url,
            "algorithm": algorithm,
            "timeout": timeout,
        }
        overrides = {key: value for key, value in overrides.items() if value is not None}

        if config is None:
            config = ClientConfig(**overrides)
        elif overrides:
            config = replace(config, **overrides)
        self.config = config
        apply_log_level(self.config.log_level)

        if not self.config.signed:
            logger.info("Client created without a secret. All requests will be sent unsigned.")

    def _limits(self) -> httpx.Limits:
        return httpx.Limits(max_connections=self.config.max_connections)

    def _prepare(self, method, path, query, data, headers) -> PreparedRequest:
        prepared = prepare_request(self.config, method, path, query=query, data=data, headers=headers)

        if self.config.log_requests:
            message = f"{prepared.method} {prepared.url}\n  Headers: {json.dumps(prepared.headers)}"
            if prepared.body is not None and len(prepared.body) < 500:
                message += f"\n  Data: {prepared.body.decode('utf-8', errors='replace')}"
            logger.info(message)

        return prepared

    def _send_headers(self, prepared: PreparedRequest) -> dict[str, str]:
        return {"user-agent": USER_AGENT, **prepared.headers}


class Client(_ClientBase):
    """
    Synchronous client that signs every request.

    Example:
        >>> with Client("SAMPLE_API_KEY", "EXAMPLE_SECRET", base_url="http://localhost:8000") as client:
        ...     items = client.request("GET", "/v1/items/", query={"limit": 10})
    """

    def __init__(self, *args, transport: httpx.BaseTransport | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = httpx.Client(timeout=self.config.timeout, limits=self._limits(), transport=transport)

    def request(
        self,
        method: str,
        path: str,
        query: Mapping[str, Any] | None = None,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """
        Make a signed request.

        Returns:
            Decoded JSON response, or the response text

        Raises:
            BadInputError: Before sending, if the request cannot be built
            RequestTimeoutError: If the request timed out
            AuthenticationError: If the server answered 401
            RequestError: For any other non-success status
        """
        prepared = self._prepare(method, path, query, data, headers)

        try:
            response = self.client.request(
                prepared.method, prepared.url, content=prepared.body, headers=self._send_headers(prepared)
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError("The request has timed out.", timeout=self.config.timeout) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request failed: {e}") from e

        return _parse_response(response)

    def call(self, method: str, path: str, data: Any = None, query: Mapping[str, Any] | None = None) -> Any:
        """Shorthand for request() with the body before the query."""
        return self.request(method, path, query=query, data=data)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def close(self):
        """Close the HTTP client."""
        self.client.close()


class AsyncClient(_ClientBase):
    """
    Asynchronous client that signs every request.

    Suited to applications that need to handle many concurrent requests.
    """

    def __init__(self, *args, transport: httpx.AsyncBaseTransport | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = httpx.AsyncClient(timeout=self.config.timeout, limits=self._limits(), transport=transport)

    async def request(
        self,
        method: str,
        path: str,
        query: Mapping[str, Any] | None = None,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Make a signed request asynchronously."""
        prepared = self._prepare(method, path, query, data, headers)

        try:
            response = await self.client.request(
                prepared.method, prepared.url, content=prepared.body, headers=self._send_headers(prepared)
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError("The request has timed out.", timeout=self.config.timeout) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request failed: {e}") from e

        return _parse_response(response)

    async def call(self, method: str, path: str, data: Any = None, query: Mapping[str, Any] | None = None) -> Any:
        """Shorthand for request() with the body before the query."""
        return await self.request(method, path, query=query, data=data)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self):
        """Close the async HTTP client."""
        await self.client.aclose()

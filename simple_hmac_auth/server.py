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
Request Verification

Server side of the protocol. ``Server.authenticate`` runs these checks in order and
stops at the first failure:

1. Mark the request unauthenticated
2. Obtain the body (optionally by draining the request stream, with a size ceiling)
3. Extract the API key (authorization header, then ``apiKey`` query parameter)
4. Resolve the secret through the injected lookup, with a timeout
5. Require the signature and date headers
6. Reject requests whose date is older than the permitted skew
7. Parse the signature header
8. Recompute the signature over the canonical request and compare
9. Mark the request authenticated
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from enum import Enum
from urllib.parse import parse_qs

from .canonicalize import canonicalize
from .config import ServerConfig, apply_log_level
from .exceptions import AuthError, ErrorCode
from .models import AuthResult, SignatureHeader
from .secret_lookup import SecretLookup
from .sign import sign, signatures_match

logger = logging.getLogger(__name__)


class _BodySentinel(Enum):
    READ_BODY = "read-body"


# Pass as the body to have the server read it from the request stream itself
READ_BODY = _BodySentinel.READ_BODY


@dataclass
class IncomingRequest:
    """Framework-neutral view of an inbound HTTP request.

    Header names are matched case-insensitively. ``url`` is the request target as
    received: the path, optionally followed by ``?`` and the raw query string.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)

    # Query parameters already parsed by a framework, if any
    query: Mapping[str, str] | None = None

    # Body already read by a framework, if any
    raw_body: str | bytes | None = None

    # Body chunks, read only when asked to via READ_BODY
    stream: AsyncIterator[bytes] | None = None

    authenticated: bool = False
    api_key: str | None = None
    secret: str | None = None
    signature: str | None = None

    def __post_init__(self):
        self.headers = {key.lower(): value for key, value in self.headers.items()}

    @property
    def path(self) -> str:
        return self.url.partition("?")[0]

    @property
    def query_string(self) -> str:
        return self.url.partition("?")[2]

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


def http_date(moment: datetime) -> str:
    """RFC-1123 formatted date, as used by the date header."""
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def parse_http_date(value: str) -> datetime | None:
    """Parse an RFC-1123 (or ISO-8601) date; None when it cannot be read."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Server:
    """
    Verifies signed requests.

    Example:
        >>> server = Server(static_secrets({"SAMPLE_API_KEY": "EXAMPLE_SECRET"}))
        >>> result = await server.authenticate(request)
        >>> result.api_key
        'SAMPLE_API_KEY'
    """

    def __init__(
        self,
        secret_lookup: SecretLookup | None = None,
        config: ServerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the verifier.

        Args:
            secret_lookup: Async callable mapping an API key to its secret, or None
            config: Optional configuration object
            clock: Returns the current time as a UNIX timestamp
        """
        self.secret_lookup = secret_lookup
        self.config = config or ServerConfig()
        self.clock = clock

        apply_log_level(self.config.log_level)

    async def authenticate(
        self,
        request: IncomingRequest,
        body: str | bytes | None | _BodySentinel = READ_BODY,
    ) -> AuthResult:
        """
        Authenticate a request.

        Args:
            request: The request to verify; annotated in place
            body: The raw body, or READ_BODY to read it from the request

        Returns:
            AuthResult with the API key, secret and signature

        Raises:
            AuthError: If any check fails
        """
        # Assume the worst until every check has passed
        request.authenticated = False

        if body is READ_BODY:
            body = await self.read_body(request)
            request.raw_body = body

        api_key = self.api_key_for_request(request)

        if api_key is None:
            raise AuthError("Missing API Key", ErrorCode.API_KEY_MISSING)

        request.api_key = api_key

        secret = await self.secret_for_key(api_key)

        if secret is None:
            raise AuthError(f"Unrecognized API key: {api_key}", ErrorCode.API_KEY_UNRECOGNIZED)

        request.secret = secret

        signature_value = request.header("signature")
        if signature_value is None:
            raise AuthError(
                "Missing signature. Please sign all incoming requests with the 'signature' header.",
                ErrorCode.SIGNATURE_HEADER_MISSING,
            )

        date_value = request.header("date")
        if date_value is None:
            raise AuthError(
                "Missing timestamp. Please timestamp all incoming requests by including 'date' header.",
                ErrorCode.DATE_HEADER_MISSING,
            )

        self.check_timestamp(date_value)

        header = SignatureHeader.parse(signature_value)

        canonical = canonicalize(request.method, request.path, request.query_string, request.headers, body)
        calculated = sign(canonical, secret, header.algorithm)

        request.signature = calculated

        if not signatures_match(calculated, header.signature):
            logger.debug(f"Signature mismatch for API key {api_key}")
            raise AuthError("Signature is invalid.", ErrorCode.SIGNATURE_INVALID)

        request.authenticated = True
        logger.debug(f"Authenticated request {request.method} {request.path} for API key {api_key}")

        return AuthResult(api_key=api_key, secret=secret, signature=header.signature)

    def check_timestamp(self, date_value: str) -> None:
        """Reject requests dated further in the past than the permitted skew."""
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        request_time = parse_http_date(date_value)

        if request_time is None:
            raise AuthError(
                f'Timestamp could not be parsed. Received: "{date_value}"',
                ErrorCode.DATE_HEADER_INVALID,
                {"time": http_date(now)},
            )

        # Only requests older than the window are rejected; future dates pass
        age = (now - request_time).total_seconds()
        if age > self.config.permitted_timestamp_skew:
            raise AuthError(
                f'Timestamp is too old. Received: "{date_value}" current time: "{http_date(now)}"',
                ErrorCode.DATE_HEADER_INVALID,
                {"time": http_date(now)},
            )

    def api_key_for_request(self, request: IncomingRequest) -> str | None:
        """Extract the API key from the authorization header or the query."""
        authorization = request.header("authorization")

        if authorization is not None:
            # The authorization header should look like this:
            # api-key sampleKey
            components = authorization.split()
            if len(components) > 1:
                return components[1]
            return None

        if request.query is not None:
            return request.query.get("apiKey")

        values = parse_qs(request.query_string).get("apiKey")
        if values:
            return values[0]
        return None

    async def secret_for_key(self, api_key: str) -> str | None:
        """Resolve the secret for an API key, bounded by the configured timeout."""
        if self.secret_lookup is None:
            raise AuthError(
                "Missing secret lookup function",
                ErrorCode.INTERNAL_ERROR_SECRET_DISCOVERY,
                {"details": "Please provide a secret_lookup collaborator"},
            )

        timeout = self.config.secret_lookup_timeout

        try:
            return await asyncio.wait_for(self._lookup(api_key), timeout=timeout)
        except asyncio.TimeoutError:
            raise AuthError(
                f'Internal failure while attempting to locate secret for API key "{api_key}": '
                f"secret lookup has timed out after {timeout:g} seconds",
                ErrorCode.INTERNAL_ERROR_SECRET_TIMEOUT,
            ) from None

    async def _lookup(self, api_key: str) -> str | None:
        try:
            return await self.secret_lookup(api_key)
        except AuthError:
            raise
        except Exception as e:
            code = getattr(e, "code", None) or ErrorCode.INTERNAL_ERROR_SECRET_DISCOVERY
            raise AuthError(
                f'Internal failure while attempting to locate secret for API key "{api_key}": {e}',
                code,
            ) from e

    async def read_body(self, request: IncomingRequest) -> str | bytes:
        """Return the raw body, draining the request stream if it has not been read yet."""
        if request.raw_body is not None:
            return request.raw_body

        if request.stream is None:
            return b""

        limit = self.config.body_size_limit_bytes
        chunks: list[bytes] = []
        size = 0

        async for chunk in request.stream:
            chunks.append(chunk)
            size += len(chunk)

            if size > limit:
                aclose = getattr(request.stream, "aclose", None)
                if aclose is not None:
                    await aclose()
                raise AuthError(
                    f"Maximum body length ({self.config.body_size_limit:g}mb) exceeded.",
                    ErrorCode.BODY_TOO_LARGE,
                )

        return b"".join(chunks)

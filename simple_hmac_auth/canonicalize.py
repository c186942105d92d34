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
Request Canonicalization

Turns an HTTP request into the exact string that gets signed.

Canonical Request Format:
    {METHOD}\n{path}\n{query}\n{headers}\n{body_hash}

Where:
    - METHOD: upper-cased HTTP method
    - path: request path, verbatim, without the query string
    - query: the already-encoded query string exactly as sent on the wire
    - headers: whitelisted headers, lower-cased, sorted, one "key:value" per line
    - body_hash: SHA-256 hex digest of the body (of the empty string if there is none)
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Mapping
from typing import Any

# Only these headers take part in the signature
HEADER_WHITELIST = (
    "authorization",
    "date",
    "content-length",
    "content-type",
)


def hash_body(body: str | bytes | None) -> str:
    """SHA-256 hex digest of the body, UTF-8 encoded when given as text."""
    if body is None:
        body = b""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def format_value(value: Any) -> str:
    """String form of a scalar the way JavaScript's String() writes it."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    return f"{value}"


def canonical_headers(headers: Mapping[str, Any] | None) -> str:
    """Whitelisted headers as sorted "key:value" lines without a trailing newline."""
    clean: dict[str, str] = {}

    for key, value in (headers or {}).items():
        key = key.lower()
        if key not in HEADER_WHITELIST:
            continue

        value = format_value(value)

        # A zero-length body must not add a content-length line
        if key == "content-length" and value == "0":
            continue

        clean[key] = value

    return "\n".join(f"{key}:{clean[key].strip()}" for key in sorted(clean))


def canonicalize(
    method: str,
    uri: str,
    query_string: str | None = "",
    headers: Mapping[str, Any] | None = None,
    body: str | bytes | None = None,
) -> str:
    """
    Create the canonical request string for signing/verification.

    The query string is not sorted or re-encoded here; the client builds it sorted and
    encoded, and the server must pass the raw query text it received.

    Args:
        method: HTTP method, any case
        uri: Request path without the query string
        query_string: Encoded query string, or None
        headers: All request headers; only the whitelisted ones are used
        body: Raw request body, or None

    Returns:
        Canonical request string

    Example:
        >>> canonicalize("get", "/items/", "", {}, None)
        'GET\\n/items/\\n\\n\\ne3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    if query_string is None:
        query_string = ""

    return "\n".join(
        [
            method.upper(),
            uri,
            query_string,
            canonical_headers(headers),
            hash_body(body),
        ]
    )

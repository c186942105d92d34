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
Simple HMAC Auth Data Models

Pydantic models for signature headers, authentication results and error responses.
"""

import json
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import AuthError, ErrorCode
from .sign import ALGORITHMS, PROTOCOL, format_signature_header

SIGNATURE_EXAMPLE = f"{PROTOCOL} sha256 a42d7b09a929b997aa8e6973bdbd5ca94326cbffc3d06a557d9ed36c6b80d4ff"


class SignatureHeader(BaseModel):
    """The parsed value of the ``signature`` header."""

    model_config = ConfigDict(frozen=True)

    protocol: str = Field(PROTOCOL, description="Protocol tag, always simple-hmac-auth")
    algorithm: str = Field(..., description="HMAC digest algorithm")
    signature: str = Field(..., description="Hex-encoded HMAC")

    @classmethod
    def parse(cls, value: str) -> "SignatureHeader":
        """
        Parse a header such as ``simple-hmac-auth sha256 148c0335...``.

        Raises:
            AuthError: SIGNATURE_HEADER_INVALID for a malformed header or unknown protocol,
                HMAC_ALGORITHM_INVALID for an unsupported algorithm
        """
        components = value.split()

        if len(components) < 3:
            raise AuthError(
                f'Signature header is improperly formatted: "{value}"',
                ErrorCode.SIGNATURE_HEADER_INVALID,
                {"details": f'It should look like: "{SIGNATURE_EXAMPLE}"'},
            )

        protocol, algorithm, signature = components[:3]

        if protocol != PROTOCOL:
            raise AuthError(
                f'Signature header included unsupported protocol version: "{protocol}". '
                "Ensure the client and server are using the latest signature library.",
                ErrorCode.SIGNATURE_HEADER_INVALID,
                {"details": f'Expected "{PROTOCOL}"'},
            )

        if algorithm not in ALGORITHMS:
            supported = '", "'.join(ALGORITHMS)
            raise AuthError(
                f'Signature header sent invalid algorithm: "{algorithm}". '
                f'The only supported hmac algorithms are: "{supported}"',
                ErrorCode.HMAC_ALGORITHM_INVALID,
            )

        return cls(protocol=protocol, algorithm=algorithm, signature=signature)

    def __str__(self) -> str:
        return format_signature_header(self.algorithm, self.signature)


class AuthResult(BaseModel):
    """Returned by a successful authentication."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(..., description="API key the request was signed for")
    secret: str = Field(..., description="Secret resolved for that API key")
    signature: str = Field(..., description="Signature the client sent")


class StructuredErrorBody(BaseModel):
    """Error response whose JSON carried fields, either nested under ``error`` or top-level."""

    kind: Literal["structured"] = "structured"
    fields: Dict[str, Any] = Field(default_factory=dict)

    @property
    def message(self) -> Optional[str]:
        value = self.fields.get("message")
        return value if isinstance(value, str) else None

    @property
    def code(self) -> Optional[str]:
        value = self.fields.get("code")
        return value if isinstance(value, str) else None


class PlainErrorBody(BaseModel):
    """Error response that was only text (or a JSON string)."""

    kind: Literal["plain"] = "plain"
    text: str = ""

    @property
    def message(self) -> Optional[str]:
        return self.text or None

    @property
    def code(self) -> Optional[str]:
        return None


ErrorBody = Union[StructuredErrorBody, PlainErrorBody]


def parse_error_body(text: str) -> ErrorBody:
    """Decide once how an error response body should be read."""
    try:
        data = json.loads(text)
    except ValueError:
        return PlainErrorBody(text=text)

    if isinstance(data, dict):
        nested = data.get("error")
        if isinstance(nested, dict):
            return StructuredErrorBody(fields=nested)
        return StructuredErrorBody(fields=data)

    if isinstance(data, str):
        return PlainErrorBody(text=data)

    return PlainErrorBody(text=text)

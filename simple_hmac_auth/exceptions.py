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
Simple HMAC Auth Exceptions

Error codes and exception classes shared by the signer, the verifier and the client.
"""

from enum import Enum
from typing import Any, Dict, Optional, TypedDict


class ErrorCode(str, Enum):
    """Wire-level error codes. The value is what gets sent to clients."""

    API_KEY_MISSING = "API_KEY_MISSING"
    API_KEY_UNRECOGNIZED = "API_KEY_UNRECOGNIZED"
    SIGNATURE_HEADER_MISSING = "SIGNATURE_HEADER_MISSING"
    SIGNATURE_HEADER_INVALID = "SIGNATURE_HEADER_INVALID"
    DATE_HEADER_MISSING = "DATE_HEADER_MISSING"
    DATE_HEADER_INVALID = "DATE_HEADER_INVALID"
    HMAC_ALGORITHM_INVALID = "HMAC_ALGORITHM_INVALID"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    INTERNAL_ERROR_SECRET_DISCOVERY = "INTERNAL_ERROR_SECRET_DISCOVERY"
    INTERNAL_ERROR_SECRET_TIMEOUT = "INTERNAL_ERROR_SECRET_TIMEOUT"
    BODY_TOO_LARGE = "ETOOLONG"
    BAD_INPUT = "EBADINPUT"
    TIMEOUT = "ETIMEOUT"


class ErrorPayload(TypedDict):
    code: str
    message: str


def error_response(code: ErrorCode | str, message: str = "") -> ErrorPayload:
    value = code.value if isinstance(code, ErrorCode) else str(code)
    return {"code": value, "message": message}


class HMACAuthError(Exception):
    """Base exception for simple-hmac-auth errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class AuthError(HMACAuthError):
    """Raised by the server when a request fails authentication."""

    def __init__(self, message: str, code: ErrorCode | str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = code

    @property
    def code_value(self) -> str:
        return self.code.value if isinstance(self.code, ErrorCode) else str(self.code)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(error_response(self.code, self.message))
        payload.update(self.details)
        return payload


class UnsupportedAlgorithm(HMACAuthError):
    """Raised when asked to sign with an algorithm outside the supported set."""

    def __init__(self, algorithm: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f'Invalid algorithm: "{algorithm}"', details)
        self.algorithm = algorithm


class ConfigurationError(HMACAuthError):
    """Raised when there are configuration issues."""
    pass


class BadInputError(HMACAuthError):
    """Raised before any network activity when a request cannot be built."""

    code = ErrorCode.BAD_INPUT

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.field = field


class RequestTimeoutError(HMACAuthError):
    """Raised when an outbound request exceeds its timeout."""

    code = ErrorCode.TIMEOUT

    def __init__(self, message: str, timeout: Optional[float] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.timeout = timeout


class NetworkError(HMACAuthError):
    """Raised when network connectivity issues occur."""
    pass


class RequestError(HMACAuthError):
    """Raised when the server answers with a non-success status code."""

    def __init__(
        self,
        message: str,
        status_code: int,
        code: Optional[str] = None,
        body: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.code = code
        self.body = body


class AuthenticationError(RequestError):
    """Raised when the server rejects a request with HTTP 401."""
    pass

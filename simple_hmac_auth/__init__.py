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
Simple HMAC Auth

HMAC request signing for HTTP APIs: a client signs a canonical form of every
request, and the server recomputes and compares the signature.
"""

from .canonicalize import HEADER_WHITELIST, canonicalize
from .client import AsyncClient, Client, PreparedRequest, prepare_request
from .config import ClientConfig, ServerConfig
from .exceptions import (
    AuthenticationError,
    AuthError,
    BadInputError,
    ConfigurationError,
    ErrorCode,
    HMACAuthError,
    NetworkError,
    RequestError,
    RequestTimeoutError,
    UnsupportedAlgorithm,
)
from .models import AuthResult, PlainErrorBody, SignatureHeader, StructuredErrorBody
from .secret_lookup import EnvironmentSecretLookup, SecretLookup, from_callback, from_sync, static_secrets
from .server import READ_BODY, IncomingRequest, Server
from .sign import ALGORITHMS, PROTOCOL, sign

__version__ = "1.0.0"
__author__ = "ATP Project Contributors"

__all__ = [
    # Protocol
    "canonicalize",
    "sign",
    "HEADER_WHITELIST",
    "ALGORITHMS",
    "PROTOCOL",
    # Server
    "Server",
    "IncomingRequest",
    "READ_BODY",
    "SecretLookup",
    "static_secrets",
    "from_sync",
    "from_callback",
    "EnvironmentSecretLookup",
    # Clients
    "Client",
    "AsyncClient",
    "prepare_request",
    "PreparedRequest",
    # Models
    "AuthResult",
    "SignatureHeader",
    "StructuredErrorBody",
    "PlainErrorBody",
    # Configuration
    "ServerConfig",
    "ClientConfig",
    # Exceptions
    "ErrorCode",
    "HMACAuthError",
    "AuthError",
    "UnsupportedAlgorithm",
    "ConfigurationError",
    "BadInputError",
    "RequestTimeoutError",
    "NetworkError",
    "RequestError",
    "AuthenticationError",
]

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
Simple HMAC Auth Configuration

Immutable settings for the verifying server and the signing client. Build one at
startup (directly, from the environment or from a file) and pass it by reference.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any

from .exceptions import ConfigurationError
from .sign import ALGORITHMS

ENV_PREFIX = "SIMPLE_HMAC_AUTH_"

BYTES_PER_MEGABYTE = 1_000_000

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def apply_log_level(level: str) -> None:
    """Set the level of the package logger; every module logger inherits it."""
    logging.getLogger(__package__).setLevel(level.upper())


def _check_log_level(level: str) -> None:
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level: {level!r}. Expected one of: {', '.join(LOG_LEVELS)}")


def _env(name: str) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}")


def _env_float(name: str) -> float | None:
    value = _env(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {value!r}")


def _env_bool(name: str) -> bool | None:
    value = _env(name)
    if value is None:
        return None
    return value.lower() in ("true", "1", "yes")


def _load_file(config_file: str) -> dict[str, Any]:
    import json

    import yaml

    try:
        with open(config_file) as f:
            if config_file.endswith(".json"):
                config_data = json.load(f)
            elif config_file.endswith((".yml", ".yaml")):
                config_data = yaml.safe_load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {config_file}")
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_file}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Invalid configuration file format: {e}")

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {config_file}")
    return config_data


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the request verifier."""

    # How long to wait for the secret lookup, in seconds
    secret_lookup_timeout: float = 10.0

    # How old a request's date header may be, in seconds
    permitted_timestamp_skew: float = 60.0

    # Body size ceiling when reading the request stream, in megabytes
    body_size_limit: float = 10

    log_level: str = "INFO"

    def __post_init__(self):
        if self.secret_lookup_timeout <= 0:
            raise ConfigurationError("Secret lookup timeout must be positive.")

        if self.permitted_timestamp_skew < 0:
            raise ConfigurationError("Permitted timestamp skew must be non-negative.")

        if self.body_size_limit < 0:
            raise ConfigurationError("Body size limit must be non-negative.")

        _check_log_level(self.log_level)

    @property
    def body_size_limit_bytes(self) -> int:
        return int(round(self.body_size_limit * BYTES_PER_MEGABYTE))

    @classmethod
    def from_environment(cls, **overrides: Any) -> "ServerConfig":
        """Load configuration from SIMPLE_HMAC_AUTH_* environment variables."""
        values: dict[str, Any] = {
            "secret_lookup_timeout": _env_float("SECRET_LOOKUP_TIMEOUT"),
            "permitted_timestamp_skew": _env_float("PERMITTED_TIMESTAMP_SKEW"),
            "body_size_limit": _env_float("BODY_SIZE_LIMIT"),
            "log_level": _env("LOG_LEVEL"),
        }
        values = {key: value for key, value in values.items() if value is not None}
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_file(cls, config_file: str) -> "ServerConfig":
        """Load configuration from a JSON or YAML file."""
        try:
            return cls(**_load_file(config_file))
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration parameter: {e}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for the signing client."""

    api_key: str | None = None

    # Requests are sent unsigned when no secret is configured
    secret: str | None = None

    base_url: str = "http://localhost"
    algorithm: str = "sha256"

    # Request timeout in seconds
    timeout: float = 7.5
    max_connections: int = 250

    # Header that carries the request time
    timestamp_header: str = "date"

    # Sent with every request; per-call headers win on collision
    headers: dict[str, str] = field(default_factory=dict)

    log_level: str = "INFO"
    log_requests: bool = False

    def __post_init__(self):
        if not self.api_key or not isinstance(self.api_key, str):
            raise ConfigurationError(
                f"API key is required. Set {ENV_PREFIX}API_KEY environment variable or pass api_key parameter."
            )

        if self.secret is not None and (self.secret == "" or not isinstance(self.secret, str)):
            raise ConfigurationError(f'Invalid secret: "{self.secret}"')

        if not self.base_url:
            raise ConfigurationError("Base URL is required.")

        if self.algorithm not in ALGORITHMS:
            supported = '", "'.join(ALGORITHMS)
            raise ConfigurationError(
                f'Invalid HMAC algorithm: "{self.algorithm}". The only supported algorithms are: "{supported}"'
            )

        if self.timeout <= 0:
            raise ConfigurationError("Timeout must be positive.")

        if self.max_connections <= 0:
            raise ConfigurationError("Max connections must be positive.")

        if not self.timestamp_header:
            raise ConfigurationError("Timestamp header name is required.")

        _check_log_level(self.log_level)

        # Keep a private copy so callers cannot mutate it afterwards
        object.__setattr__(self, "headers", dict(self.headers or {}))

    @property
    def signed(self) -> bool:
        return self.secret is not None

    @classmethod
    def from_environment(cls, **overrides: Any) -> "ClientConfig":
        """Load configuration from SIMPLE_HMAC_AUTH_* environment variables."""
        values: dict[str, Any] = {
            "api_key": _env("API_KEY"),
            "secret": _env("SECRET"),
            "base_url": _env("BASE_URL"),
            "algorithm": _env("ALGORITHM"),
            "timeout": _env_float("TIMEOUT"),
            "timestamp_header": _env("TIMESTAMP_HEADER"),
            "log_level": _env("LOG_LEVEL"),
            "log_requests": _env_bool("LOG_REQUESTS"),
        }
        values = {key: value for key, value in values.items() if value is not None}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @classmethod
    def from_file(cls, config_file: str) -> "ClientConfig":
        """Load configuration from a JSON or YAML file."""
        try:
            return cls(**_load_file(config_file))
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration parameter: {e}")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        data["secret"] = "***" if self.secret else None
        return data

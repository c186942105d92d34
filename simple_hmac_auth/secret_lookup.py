# Copyright 2025 ATP Project Contributors
# Licensed under the Apache License, Version 2.0

"""Secret lookup collaborators.

The verifier only knows one contract: an async callable taking an API key and
returning its secret, or None when the key is unknown. The helpers here adapt
other shapes to that contract at the boundary.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from typing import Optional

logger = logging.getLogger(__name__)

SecretLookup = Callable[[str], Awaitable[Optional[str]]]

SecretCallback = Callable[[Optional[BaseException], Optional[str]], None]


def static_secrets(secrets: Mapping[str, str]) -> SecretLookup:
    """Serve secrets from an in-memory mapping."""
    table = dict(secrets)

    async def lookup(api_key: str) -> str | None:
        return table.get(api_key)

    return lookup


class EnvironmentSecretLookup:
    """Environment variable secrets (for development).

    ``EnvironmentSecretLookup("HMAC_SECRET_")`` resolves API key ``sample-key``
    from ``HMAC_SECRET_SAMPLE_KEY``.
    """

    def __init__(self, prefix: str = "HMAC_SECRET_"):
        self.prefix = prefix

    def env_var(self, api_key: str) -> str:
        return f"{self.prefix}{api_key}".upper().replace("/", "_").replace("-", "_").replace(".", "_")

    async def __call__(self, api_key: str) -> str | None:
        env_var = self.env_var(api_key)
        value = os.getenv(env_var)
        if value is not None:
            logger.debug(f"Retrieved secret from environment: {env_var}")
        return value


def from_sync(func: Callable[[str], Optional[str]]) -> SecretLookup:
    """Adapt a plain function that returns the secret directly.

    The function runs in a worker thread so the lookup timeout still applies
    while it blocks.
    """

    async def lookup(api_key: str) -> str | None:
        return await asyncio.to_thread(func, api_key)

    return lookup


def from_callback(func: Callable[[str, SecretCallback], None]) -> SecretLookup:
    """Adapt a function that reports through ``callback(error, secret)``.

    Only the first invocation of the callback counts. The callback may be called
    from another thread.
    """

    async def lookup(api_key: str) -> str | None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def settle(error: BaseException | None, secret: str | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(secret)

        def callback(error: BaseException | None = None, secret: str | None = None) -> None:
            try:
                loop.call_soon_threadsafe(settle, error, secret)
            except RuntimeError:
                # Loop already closed, nobody is waiting for this result
                logger.debug("Secret lookup callback arrived after the event loop closed")

        func(api_key, callback)
        return await future

    return lookup

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

"""HMAC signatures over canonical request strings."""

from __future__ import annotations

import hashlib
import hmac

from .exceptions import UnsupportedAlgorithm

PROTOCOL = "simple-hmac-auth"

# Permitted algorithms
ALGORITHMS = ("sha1", "sha256", "sha512")

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def sign(canonical: str, secret: str, algorithm: str) -> str:
    """Return the lowercase hex HMAC of ``canonical`` keyed with ``secret``."""
    if algorithm not in ALGORITHMS:
        raise UnsupportedAlgorithm(algorithm, {"supported": list(ALGORITHMS)})

    return hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), _DIGESTS[algorithm]).hexdigest()


def signatures_match(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def format_signature_header(algorithm: str, signature: str) -> str:
    return f"{PROTOCOL} {algorithm} {signature}"

"""Request signing and nonce generation for the wsapi 2.0 protocol.

Both requests and responses are signed the same way: the parameters are
sorted by key, form-encoded into a query string and run through
HMAC-SHA1 keyed with the base64-decoded API key. The digest is base64
encoded and every ``+`` is written as ``%2B`` so the signature can be
dropped straight into a URL.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import random
import secrets
import time
from collections.abc import Mapping
from urllib.parse import urlencode

from yubikey_client.errors import ConfigurationError

# Entropy fed into each nonce, in bytes
NONCE_ENTROPY_BYTES = 32


def decode_api_key(api_key: str) -> bytes:
    """Decode a base64 API key into the raw HMAC secret.

    Raises:
        ConfigurationError: If the key is empty or not valid base64.
    """
    if not api_key:
        raise ConfigurationError("Invalid API key: key is empty")
    try:
        secret = base64.b64decode(api_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"Invalid API key: {e}") from e
    if not secret:
        raise ConfigurationError("Invalid API key: decodes to nothing")
    return secret


def canonical_query(params: Mapping[str, object]) -> str:
    """Build the string that gets signed: sorted, form-encoded, colons kept."""
    ordered = sorted((str(k), str(v)) for k, v in params.items())
    return urlencode(ordered).replace("%3A", ":")


def sign(params: Mapping[str, object], secret: bytes) -> str:
    """Compute the protocol signature of ``params`` under ``secret``."""
    digest = hmac.new(secret, canonical_query(params).encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii").replace("+", "%2B")


def generate_nonce() -> str:
    """Return a fresh 32 character hex nonce.

    Uses the OS CSPRNG. Platforms without one fall back to a time and
    ``random`` mix, which is unpredictable enough for replay protection
    but not for secrets.
    """
    try:
        seed = secrets.token_bytes(NONCE_ENTROPY_BYTES)
    except NotImplementedError:
        seed = f"{time.time_ns()}:{random.getrandbits(NONCE_ENTROPY_BYTES * 8)}".encode()
    return hashlib.md5(seed).hexdigest()

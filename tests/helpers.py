"""Wire-format builders shared by the validation client tests."""

from __future__ import annotations

import base64
from urllib.parse import parse_qs, urlsplit

import httpx

from yubikey_client.utils.crypto import sign

SECRET = b"secret"
API_KEY = base64.b64encode(SECRET).decode()

# 12 character public id + 32 character one-time part
OTP = "cccccccbcjdifctrndncchkftchjlnbhvhtugdljibej"
PUBLIC_ID = "cccccccbcjdi"

SERVER_TIME = "2024-01-01T00:00:00Z0123"


def build_body(fields: dict[str, str], secret: bytes = SECRET, h: str | None = None) -> str:
    """Render a verify response body signed the way a server signs it."""
    if h is None:
        h = sign(fields, secret).replace("%2B", "+")
    lines = [f"h={h}"] + [f"{k}={v}" for k, v in fields.items()]
    return "\r\n".join(lines) + "\r\n"


def query_of(request: httpx.Request) -> dict[str, str]:
    """Decode the query of an outgoing verify request."""
    return {k: v[0] for k, v in parse_qs(urlsplit(str(request.url)).query).items()}


def reply_fields(request: httpx.Request, status: str = "OK", **overrides: str) -> dict[str, str]:
    """Fields a server would sign when answering ``request``."""
    query = query_of(request)
    fields = {
        "t": SERVER_TIME,
        "otp": query["otp"],
        "nonce": query["nonce"],
        "sl": "100",
        "status": status,
    }
    fields.update(overrides)
    return fields


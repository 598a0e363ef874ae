"""Shared test setup for the validation client test suite."""

from __future__ import annotations

import base64
import os

# Keep a developer's .env from leaking into config defaults.
os.environ["YUBIKEY_CLIENT_ID"] = "1"
os.environ["YUBIKEY_API_KEY"] = base64.b64encode(b"secret").decode()
os.environ["YUBIKEY_HOSTS"] = ""

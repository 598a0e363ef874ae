"""Client for the Yubico OTP validation protocol (wsapi 2.0)."""

__version__ = "0.1.0"

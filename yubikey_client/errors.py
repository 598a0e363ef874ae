"""Exceptions raised to callers of the validation client.

Transport and signature failures are never raised; they are absorbed into
the verdict. Only configuration and input problems escape.
"""

from __future__ import annotations


class YubikeyError(Exception):
    """Base class for errors raised by the validation client."""


class ConfigurationError(YubikeyError, ValueError):
    """Raised when the client is configured with unusable values."""


class InputValidationError(YubikeyError, ValueError):
    """Raised when a check is requested with invalid input."""

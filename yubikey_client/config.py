"""Client configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from yubikey_client.core.consensus import ConsensusPolicy
from yubikey_client.core.hosts import DEFAULT_HOSTS
from yubikey_client.errors import ConfigurationError
from yubikey_client.utils.crypto import decode_api_key

load_dotenv()

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _int_env(key: str, default: str) -> int:
    val = os.getenv(key, default)
    try:
        return int(val)
    except (ValueError, TypeError, OverflowError):
        raise ValueError(f"Invalid integer for {key}: {val!r}")


def _float_env(key: str, default: str) -> float:
    val = os.getenv(key, default)
    try:
        return float(val)
    except (ValueError, TypeError, OverflowError):
        raise ValueError(f"Invalid float for {key}: {val!r}")


def _bool_env(key: str, default: str) -> bool:
    val = os.getenv(key, default).strip().lower()
    if val in _TRUE:
        return True
    if val in _FALSE:
        return False
    raise ValueError(f"Invalid boolean for {key}: {val!r}")


@dataclass(frozen=True)
class Config:
    # Credentials from https://upgrade.yubico.com/getapikey/
    client_id: int = _int_env("YUBIKEY_CLIENT_ID", "0")
    api_key: str = os.getenv("YUBIKEY_API_KEY", "")

    # Comma-separated validation hosts; empty means the Yubico defaults
    hosts: str = os.getenv("YUBIKEY_HOSTS", "")

    use_secure: bool = _bool_env("YUBIKEY_USE_SECURE", "true")
    multi: bool = _bool_env("YUBIKEY_MULTI", "false")
    policy: str = os.getenv("YUBIKEY_POLICY", ConsensusPolicy.ALL_MUST_AGREE.value)

    # Per-host request deadline (seconds)
    http_timeout: float = _float_env("HTTP_TIMEOUT", "10.0")

    @property
    def host_list(self) -> list[str]:
        """Parse the comma-separated host list, falling back to the defaults."""
        hosts = [h.strip() for h in self.hosts.split(",") if h.strip()]
        return hosts or list(DEFAULT_HOSTS)

    @property
    def consensus_policy(self) -> ConsensusPolicy:
        return ConsensusPolicy(self.policy)

    def validate(self) -> list[str]:
        """Validate config at startup. Raises ConfigurationError on hard errors, returns warnings."""
        warnings: list[str] = []
        if not self.api_key:
            raise ConfigurationError("YUBIKEY_API_KEY is required. Get one at https://upgrade.yubico.com/getapikey/")
        decode_api_key(self.api_key)
        if self.client_id < 1:
            raise ConfigurationError(f"YUBIKEY_CLIENT_ID must be >= 1, got {self.client_id}")
        known_policies = [p.value for p in ConsensusPolicy]
        if self.policy not in known_policies:
            raise ConfigurationError(
                f"YUBIKEY_POLICY must be one of {', '.join(known_policies)}, got {self.policy!r}"
            )
        if self.http_timeout < 0.1 or self.http_timeout > 120.0:
            raise ConfigurationError(f"HTTP_TIMEOUT must be 0.1-120.0, got {self.http_timeout}")
        if not self.use_secure:
            warnings.append("YUBIKEY_USE_SECURE is off, verify requests go over plain HTTP")
        if len(self.host_list) == 1:
            if self.multi:
                warnings.append("YUBIKEY_MULTI is set but only one host is configured")
            if self.consensus_policy == ConsensusPolicy.FIRST_RESPONDER:
                warnings.append("YUBIKEY_POLICY=first has no effect with a single host")
        return warnings

"""Strategies for picking the validation host of a single-host check."""

from __future__ import annotations

import random
from collections.abc import Sequence
from typing import Protocol

from yubikey_client.errors import ConfigurationError

DEFAULT_HOSTS: tuple[str, ...] = (
    "api.yubico.com",
    "api2.yubico.com",
    "api3.yubico.com",
    "api4.yubico.com",
    "api5.yubico.com",
)


class HostSelector(Protocol):
    def select(self, hosts: Sequence[str]) -> str: ...


def _require_hosts(hosts: Sequence[str]) -> None:
    if not hosts:
        raise ConfigurationError("No validation hosts configured")


class RandomHostSelector:
    """Pick a host uniformly at random. Pass a seeded ``rng`` for tests."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.SystemRandom()

    def select(self, hosts: Sequence[str]) -> str:
        _require_hosts(hosts)
        return self._rng.choice(list(hosts))


class ExplicitHostSelector:
    """Always use the same host, whether or not it is in the configured list."""

    def __init__(self, host: str) -> None:
        if not host:
            raise ConfigurationError("Explicit host must not be empty")
        self.host = host

    def select(self, hosts: Sequence[str]) -> str:
        return self.host


class RoundRobinHostSelector:
    """Walk the configured hosts in order, wrapping around at the end."""

    def __init__(self) -> None:
        self._position = 0

    def select(self, hosts: Sequence[str]) -> str:
        _require_hosts(hosts)
        host = hosts[self._position % len(hosts)]
        self._position = (self._position + 1) % len(hosts)
        return host

"""Request and response messages exchanged with the validation servers.

A verify response is plain text, one ``key=value`` pair per line:

    h=vjhFxZrNHB5CjI6vhuSeF2n46a8=
    t=2024-01-01T00:00:00Z0123
    otp=cccccccbcjdifctrndncchkftchjlnbhvhtugdljibej
    nonce=aef3a7835277a28da831005c2ae3b919e2076a62
    sl=100
    status=OK

Only the keys in ``SIGNED_FIELDS`` are covered by the server signature.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar
from urllib.parse import urlsplit

import structlog

log = structlog.get_logger()


class ProtocolStatus(Enum):
    """Status codes a validation server can return."""

    OK = "OK"
    REPLAYED_OTP = "REPLAYED_OTP"
    REPLAYED_REQUEST = "REPLAYED_REQUEST"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    NO_SUCH_CLIENT = "NO_SUCH_CLIENT"
    BAD_OTP = "BAD_OTP"
    BAD_SIGNATURE = "BAD_SIGNATURE"
    OPERATION_NOT_ALLOWED = "OPERATION_NOT_ALLOWED"
    BACKEND_ERROR = "BACKEND_ERROR"
    NOT_ENOUGH_ANSWERS = "NOT_ENOUGH_ANSWERS"


# (wire key, attribute) pairs the server signs, in signing order
SIGNED_FIELDS: tuple[tuple[str, str], ...] = (
    ("t", "server_time"),
    ("otp", "otp"),
    ("nonce", "nonce"),
    ("sl", "success_level"),
    ("status", "status"),
    ("timestamp", "timestamp"),
    ("sessioncounter", "session_counter"),
    ("sessionuse", "session_use"),
)

_INT_FIELDS = frozenset({"success_level", "session_counter", "session_use"})


def parse_body(body: str) -> dict[str, str]:
    """Split a response body into its key/value pairs.

    Lines without ``=`` or with an empty value are skipped. Values may
    themselves contain ``=`` (base64 padding), so only the first one splits.
    """
    result: dict[str, str] = {}
    for line in body.splitlines():
        key, sep, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if not sep or not key or not value:
            continue
        result[key] = value
    return result


@dataclass(frozen=True)
class ValidationRequest:
    """One outbound verify call."""

    url: str
    method: str = "GET"

    def __post_init__(self) -> None:
        if self.method != "GET":
            raise ValueError(f"Unsupported method: {self.method!r}")
        parts = urlsplit(self.url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"Invalid URL: {self.url!r}")
        try:
            parts.port
        except ValueError as e:
            raise ValueError(f"Invalid URL: {self.url!r}") from e


@dataclass
class ValidationResponse:
    """A parsed reply from one validation server.

    ``input_otp`` and ``input_nonce`` are what we sent; they are compared
    against the signed ``otp``/``nonce`` the server echoed back.
    """

    signature: str | None = None  # h
    server_time: str | None = None  # t
    otp: str | None = None
    nonce: str | None = None
    success_level: int | None = None  # sl, percent of servers agreeing
    status: ProtocolStatus | None = None
    timestamp: str | None = None
    session_counter: int | None = None
    session_use: int | None = None
    host: str | None = None
    latency: float | None = None  # seconds since dispatch began
    input_otp: str | None = None
    input_nonce: str | None = None
    # integer fields exactly as received, keyed by wire key
    _wire: dict[str, str] = field(default_factory=dict, init=False, repr=False, compare=False)

    @classmethod
    def from_body(cls, body: str, **kwargs: object) -> ValidationResponse:
        response = cls(**kwargs)  # type: ignore[arg-type]
        response.parse(body)
        return response

    def parse(self, body: str) -> None:
        """Load the known keys of a response body into this object."""
        values = parse_body(body)
        if "h" in values:
            self.signature = values["h"]
        for key, attr in SIGNED_FIELDS:
            raw = values.get(key)
            if raw is None:
                continue
            if attr == "status":
                try:
                    self.status = ProtocolStatus(raw)
                except ValueError:
                    log.debug("unknown_protocol_status", status=raw, host=self.host)
            elif attr in _INT_FIELDS:
                if raw.isascii() and raw.isdigit():
                    setattr(self, attr, int(raw))
                    self._wire[key] = raw
                else:
                    log.debug("malformed_integer_field", field=key, value=raw, host=self.host)
            else:
                setattr(self, attr, raw)

    def get_hash(self, escaped: bool = False) -> str:
        """Return the server signature, re-padded and optionally URL-escaped.

        Servers may drop the trailing ``=`` of the base64 digest; signatures
        we compute always carry it and have ``+`` written as ``%2B``.
        """
        value = self.signature or ""
        if not value.endswith("="):
            value += "="
        if escaped:
            value = value.replace("+", "%2B")
        return value

    def signed_params(self) -> dict[str, str]:
        """Wire key -> wire value for every signed field that is set."""
        params: dict[str, str] = {}
        for key, attr in SIGNED_FIELDS:
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, ProtocolStatus):
                params[key] = value.value
            elif key in self._wire and int(self._wire[key]) == value:
                params[key] = self._wire[key]
            else:
                params[key] = str(value)
        return params

    def success(self) -> bool:
        """True when the server said OK for exactly the otp/nonce we sent."""
        if self.input_otp is None or self.input_nonce is None:
            return False
        return (
            self.status == ProtocolStatus.OK
            and self.otp == self.input_otp
            and self.nonce == self.input_nonce
        )


T = TypeVar("T")


class _Batch(Generic[T]):
    """Ordered, append-only container shared by the request/response batches."""

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._items: list[T] = []
        for item in items:
            self.append(item)

    def append(self, item: T) -> None:
        self._items.append(item)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def items(self) -> list[T]:
        """Return a copy of the contents in order."""
        return list(self._items)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._items!r})"


class RequestBatch(_Batch[ValidationRequest]):
    """Requests for one check, in the order they were built."""

    def append(self, item: ValidationRequest) -> None:
        if not isinstance(item, ValidationRequest):
            raise TypeError(f"Expected ValidationRequest, got {type(item).__name__}")
        super().append(item)


class ResponseBatch(_Batch[ValidationResponse]):
    """Responses for one check, in the order they arrived.

    ``transport_failures`` counts requests that produced no response and
    ``auth_failures`` counts responses dropped for a bad signature.
    """

    def __init__(
        self,
        items: Iterable[ValidationResponse] = (),
        transport_failures: int = 0,
        auth_failures: int = 0,
    ) -> None:
        super().__init__(items)
        self.transport_failures = transport_failures
        self.auth_failures = auth_failures

    def append(self, item: ValidationResponse) -> None:
        if not isinstance(item, ValidationResponse):
            raise TypeError(f"Expected ValidationResponse, got {type(item).__name__}")
        super().append(item)

    @property
    def hosts(self) -> list[str | None]:
        return [r.host for r in self._items]

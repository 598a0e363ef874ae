"""OTP validation against the Yubico validation servers.

A check runs through these steps:

1. The OTP is trimmed and its length checked (32-48 characters).
2. A fresh nonce is generated.
3. ``id``, ``otp``, ``nonce`` and ``timestamp`` are signed with the API key.
4. The request goes to one host, or to every configured host when
   ``multi`` is set.
5. Each response signature is verified; forged or corrupted ones are
   dropped.
6. The remaining responses are reduced to a verdict by a consensus policy.

Transport failures and negative answers from the servers never raise.
Only bad configuration and bad input do.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx
import structlog

from yubikey_client.core.authenticator import authenticate, filter_authentic
from yubikey_client.core.consensus import ConsensusPolicy, evaluate
from yubikey_client.core.dispatcher import DEFAULT_TIMEOUT, Dispatcher
from yubikey_client.core.hosts import DEFAULT_HOSTS, HostSelector, RandomHostSelector
from yubikey_client.core.messages import RequestBatch, ResponseBatch, ValidationRequest, ValidationResponse
from yubikey_client.errors import ConfigurationError, InputValidationError
from yubikey_client.metrics import CHECKS_PROCESSED
from yubikey_client.utils.crypto import canonical_query, decode_api_key, generate_nonce, sign

log = structlog.get_logger()

VERIFY_PATH = "/wsapi/2.0/verify"

OTP_MIN_LENGTH = 32
OTP_MAX_LENGTH = 48

# Length of the encrypted one-time part at the end of every OTP
OTP_SUFFIX_LENGTH = 32


def extract_public_id(otp: str) -> str:
    """Return the public identifier of the key that produced ``otp``.

    The identifier is everything before the final 32 characters, so an OTP
    of 32 characters or fewer has an empty identifier.
    """
    otp = otp.strip()
    if len(otp) <= OTP_SUFFIX_LENGTH:
        return ""
    return otp[:-OTP_SUFFIX_LENGTH]


@dataclass
class CheckResult:
    """Outcome of one ``OtpValidator.check`` call."""

    verdict: bool
    responses: ResponseBatch
    nonce: str
    yubikey_id: str
    policy: ConsensusPolicy

    def __bool__(self) -> bool:
        return self.verdict


class OtpValidator:
    """Validates OTPs against a set of Yubico validation servers."""

    def __init__(
        self,
        api_key: str,
        client_id: int | str | None,
        hosts: Iterable[str] | None = None,
        *,
        use_secure: bool = True,
        http_client: httpx.AsyncClient | None = None,
        host_selector: HostSelector | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
        nonce_factory: Callable[[], str] | None = None,
    ) -> None:
        if http_client is not None and not isinstance(http_client, httpx.AsyncClient):
            raise ConfigurationError(
                f"http_client must be an httpx.AsyncClient, got {type(http_client).__name__}"
            )
        self.api_key = api_key
        self.client_id = client_id
        self.use_secure = use_secure
        self._hosts: list[str] = list(DEFAULT_HOSTS)
        if hosts:
            self.hosts = hosts
        self._host_selector = host_selector or RandomHostSelector()
        self._nonce_factory = nonce_factory or generate_nonce
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._dispatcher = Dispatcher(self._client, timeout=timeout)
        self._yubikey_id = ""

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> OtpValidator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # -- configuration ---------------------------------------------------

    @property
    def api_key(self) -> str:
        return self._api_key

    @api_key.setter
    def api_key(self, value: str) -> None:
        self._secret = decode_api_key(value)
        self._api_key = value

    @property
    def secret(self) -> bytes:
        """The decoded API key used as HMAC secret."""
        return self._secret

    @property
    def client_id(self) -> int | None:
        return self._client_id

    @client_id.setter
    def client_id(self, value: int | str | None) -> None:
        if value is None:
            self._client_id = None
            return
        if isinstance(value, bool):
            raise ConfigurationError(f"Invalid client ID: {value!r}")
        try:
            self._client_id = int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid client ID: {value!r}")

    @property
    def use_secure(self) -> bool:
        return self._use_secure

    @use_secure.setter
    def use_secure(self, value: bool) -> None:
        if not isinstance(value, bool):
            raise ConfigurationError('"use_secure" value must be boolean')
        self._use_secure = value

    @property
    def scheme(self) -> str:
        return "https" if self._use_secure else "http"

    @property
    def hosts(self) -> tuple[str, ...]:
        return tuple(self._hosts)

    @hosts.setter
    def hosts(self, value: Iterable[str]) -> None:
        hosts = list(value)
        for host in hosts:
            _check_host(host)
        self._hosts = hosts

    def add_host(self, host: str) -> None:
        _check_host(host)
        self._hosts.append(host)

    # -- protocol --------------------------------------------------------

    def generate_signature(self, params: Mapping[str, object], key: bytes | None = None) -> str:
        """Sign ``params`` with ``key``, or with the configured API key."""
        return sign(params, self._secret if key is None else key)

    def validate_response_signature(self, response: ValidationResponse) -> bool:
        return authenticate(response, self._secret)

    def get_yubikey_id(self, otp: str | None = None) -> str:
        """Public id of ``otp``, or of the OTP from the most recent check."""
        if otp:
            return extract_public_id(otp)
        return self._yubikey_id

    def _build_requests(self, otp: str, nonce: str, multi: bool = False) -> RequestBatch:
        """Build the signed verify request(s) for ``otp``."""
        params = {"id": self._client_id, "otp": otp, "nonce": nonce, "timestamp": "1"}
        query = canonical_query(params) + "&h=" + self.generate_signature(params)
        if multi:
            if not self._hosts:
                raise ConfigurationError("No validation hosts configured")
            hosts = list(self._hosts)
        else:
            hosts = [self._host_selector.select(self._hosts)]
        try:
            return RequestBatch(
                ValidationRequest(f"{self.scheme}://{host}{VERIFY_PATH}?{query}") for host in hosts
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    async def check(
        self,
        otp: str,
        multi: bool = False,
        policy: ConsensusPolicy = ConsensusPolicy.ALL_MUST_AGREE,
    ) -> CheckResult:
        """Validate ``otp`` and return the verdict with the authenticated responses.

        Raises:
            InputValidationError: If the OTP length is out of range or no
                client ID is configured.
            ConfigurationError: If no hosts are configured.
        """
        if not isinstance(otp, str):
            raise InputValidationError(f"OTP must be a string, got {type(otp).__name__}")
        otp = otp.strip()
        if not OTP_MIN_LENGTH <= len(otp) <= OTP_MAX_LENGTH:
            raise InputValidationError("Invalid OTP length")
        if self._client_id is None:
            raise InputValidationError("Client ID cannot be None")

        yubikey_id = extract_public_id(otp)
        self._yubikey_id = yubikey_id
        nonce = self._nonce_factory()
        requests = self._build_requests(otp, nonce, multi=multi)

        log.debug("otp_check_started", yubikey_id=yubikey_id, hosts=len(requests), policy=policy.value)
        received = await self._dispatcher.dispatch(requests)
        for response in received:
            response.input_otp = otp
            response.input_nonce = nonce
        responses = filter_authentic(received, self._secret)

        verdict = evaluate(responses, policy)
        CHECKS_PROCESSED.labels(result="accepted" if verdict else "rejected").inc()
        log.info(
            "otp_check_complete",
            yubikey_id=yubikey_id,
            verdict=verdict,
            requested=len(requests),
            authenticated=len(responses),
            transport_failures=responses.transport_failures,
            auth_failures=responses.auth_failures,
        )
        return CheckResult(
            verdict=verdict,
            responses=responses,
            nonce=nonce,
            yubikey_id=yubikey_id,
            policy=policy,
        )


def _check_host(host: object) -> None:
    if not isinstance(host, str) or not host or "/" in host or any(c.isspace() for c in host):
        raise ConfigurationError(f"Invalid validation host: {host!r}")
    try:
        url = httpx.URL(f"https://{host}")
        port = urlsplit(f"//{host}").port
    except (httpx.InvalidURL, ValueError) as e:
        raise ConfigurationError(f"Invalid validation host: {host!r}") from e
    if not url.host or port == 0:
        raise ConfigurationError(f"Invalid validation host: {host!r}")

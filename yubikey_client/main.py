"""Command-line entry point: validate one OTP with the configured credentials.

    YUBIKEY_CLIENT_ID=12345 YUBIKEY_API_KEY=... yubikey-check <otp>

Prints ``OK <public id>`` or ``FAIL <public id>``. Exit status is 0 when the
OTP is accepted, 1 when it is rejected and 2 on configuration or input
errors.
"""

from __future__ import annotations

import asyncio
import sys

import structlog

from yubikey_client import __version__
from yubikey_client.logging import configure_logging

configure_logging()

from yubikey_client.config import Config
from yubikey_client.core.validate import OtpValidator
from yubikey_client.errors import YubikeyError

log = structlog.get_logger()

EXIT_ACCEPTED = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2


async def async_main(argv: list[str]) -> int:
    """Run one check and return the process exit status."""
    if len(argv) != 1:
        print("usage: yubikey-check <otp>", file=sys.stderr)
        return EXIT_ERROR

    try:
        config = Config()
        warnings = config.validate()
    except ValueError as e:
        log.error("config_invalid", err=str(e))
        return EXIT_ERROR
    for w in warnings:
        log.warning("config_warning", msg=w)

    log.debug(
        "yubikey_check_starting",
        version=__version__,
        client_id=config.client_id,
        hosts=len(config.host_list),
        multi=config.multi,
        policy=config.policy,
    )

    try:
        async with OtpValidator(
            config.api_key,
            config.client_id,
            config.host_list,
            use_secure=config.use_secure,
            timeout=config.http_timeout,
        ) as validator:
            result = await validator.check(argv[0], multi=config.multi, policy=config.consensus_policy)
    except YubikeyError as e:
        log.error("otp_check_failed", err=str(e), error_type=type(e).__name__)
        return EXIT_ERROR

    print(f"{'OK' if result.verdict else 'FAIL'} {result.yubikey_id}")
    return EXIT_ACCEPTED if result.verdict else EXIT_REJECTED


def main() -> None:
    """Validate the OTP given on the command line."""
    sys.exit(asyncio.run(async_main(sys.argv[1:])))


if __name__ == "__main__":
    main()

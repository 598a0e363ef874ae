"""Turning the authenticated responses of one check into a verdict."""

from __future__ import annotations

import math
from collections.abc import Iterable
from enum import Enum

import structlog

from yubikey_client.core.messages import ProtocolStatus, ValidationResponse

log = structlog.get_logger()


class ConsensusPolicy(Enum):
    ALL_MUST_AGREE = "all"
    FIRST_RESPONDER = "first"


def evaluate(
    responses: Iterable[ValidationResponse],
    policy: ConsensusPolicy = ConsensusPolicy.ALL_MUST_AGREE,
) -> bool:
    """Decide whether the OTP was accepted.

    FIRST_RESPONDER trusts only the fastest response. ALL_MUST_AGREE needs
    at least one success and no genuine rejection; REPLAYED_REQUEST is
    ignored since a server that already saw our nonce from a sibling
    reports it. An empty set of responses is never a success.
    """
    if policy == ConsensusPolicy.FIRST_RESPONDER:
        return _first_responder(responses)
    return _all_must_agree(responses)


def _first_responder(responses: Iterable[ValidationResponse]) -> bool:
    ordered = sorted(
        responses,
        key=lambda r: r.latency if r.latency is not None else math.inf,
    )
    if not ordered:
        return False
    return ordered[0].success()


def _all_must_agree(responses: Iterable[ValidationResponse]) -> bool:
    verdict = False
    for response in responses:
        if response.success():
            verdict = True
        elif response.status != ProtocolStatus.REPLAYED_REQUEST:
            log.info(
                "otp_rejected_by_host",
                host=response.host,
                status=response.status.value if response.status else None,
            )
            return False
    return verdict

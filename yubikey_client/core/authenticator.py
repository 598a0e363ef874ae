"""Verification of response signatures.

A response whose signature does not check out carries no trustworthy
status, so it is dropped rather than counted as a rejection.
"""

from __future__ import annotations

import hmac

import structlog

from yubikey_client.core.messages import ResponseBatch, ValidationResponse
from yubikey_client.metrics import RESPONSES_RECEIVED
from yubikey_client.utils.crypto import sign

log = structlog.get_logger()


def authenticate(response: ValidationResponse, secret: bytes) -> bool:
    """Check the server signature of ``response`` against ``secret``."""
    if not response.signature:
        return False
    expected = sign(response.signed_params(), secret)
    return hmac.compare_digest(expected.encode(), response.get_hash(escaped=True).encode())


def filter_authentic(responses: ResponseBatch, secret: bytes) -> ResponseBatch:
    """Return only the authenticated responses, counting the rest."""
    authentic = ResponseBatch(transport_failures=responses.transport_failures)
    for response in responses:
        if authenticate(response, secret):
            authentic.append(response)
            RESPONSES_RECEIVED.labels(outcome="authenticated").inc()
        else:
            authentic.auth_failures += 1
            RESPONSES_RECEIVED.labels(outcome="bad_signature").inc()
            log.warning("response_signature_invalid", host=response.host)
    return authentic

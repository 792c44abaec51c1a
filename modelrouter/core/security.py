"""Shared-secret credential checks."""

import hashlib
import hmac


def _digest(value: str) -> bytes:
    return hashlib.sha256(value.encode()).digest()


def secrets_match(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of a presented credential with the configured one.

    An unset (empty) expected secret never matches, so a deployment that
    forgot to configure a key rejects everything instead of accepting
    everything.
    """
    if not expected or not provided:
        return False
    # Compare fixed-length digests so timing does not leak the secret length
    return hmac.compare_digest(_digest(provided), _digest(expected))

"""Provider-facing transaction references.

Airtel takes a reference we format ourselves: BP-{kind}-{time}-{random},
where time is the epoch millisecond count in base 36. MTN only accepts a
UUID v4 as X-Reference-Id.
"""

import secrets
import string
import time
import uuid

_BASE36 = string.digits + string.ascii_uppercase
_RANDOM_LENGTH = 6


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError(f"base36 needs a non-negative value, got {value}")
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            return "".join(reversed(digits))


def generate_payment_reference(kind: str, now_ms: int | None = None) -> str:
    """e.g. BP-WDR-LZ1K9Q2A-7F3KQX. kind is "DEP" or "WDR"."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(_RANDOM_LENGTH))
    return f"BP-{kind}-{to_base36(now_ms)}-{suffix}"


def generate_uuid() -> str:
    return str(uuid.uuid4())

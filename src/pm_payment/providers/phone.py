"""Zambian MSISDN parsing shared by both rails."""

import re

_NATIONAL_RE = re.compile(r"^[79]\d{8}$")


def national_number(phone: str) -> str | None:
    """Reduce 0971234567 / +260971234567 / 971234567 to the 9-digit national form."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("260") and len(digits) >= 12:
        digits = digits[3:]
    if digits.startswith("0") and len(digits) == 10:
        digits = digits[1:]
    return digits if _NATIONAL_RE.match(digits) else None

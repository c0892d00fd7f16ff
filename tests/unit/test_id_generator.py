"""Tests for pm_common.id_generator and pm_common.datetime_utils."""

import re
import uuid
from datetime import UTC, datetime

import pytest

from src.pm_common.datetime_utils import utc_now
from src.pm_common.id_generator import generate_payment_reference, generate_uuid, to_base36

REFERENCE_PATTERN = re.compile(r"^BP-(DEP|WDR)-[0-9A-Z]+-[0-9A-Z]{6}$")


class TestBase36:
    @pytest.mark.parametrize("value, expected", [(0, "0"), (35, "Z"), (36, "10"), (1295, "ZZ")])
    def test_known_values(self, value: int, expected: str) -> None:
        assert to_base36(value) == expected

    def test_round_trips_through_int(self) -> None:
        assert int(to_base36(1_760_000_000_000), 36) == 1_760_000_000_000

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            to_base36(-1)


class TestPaymentReferences:
    @pytest.mark.parametrize("kind", ["DEP", "WDR"])
    def test_reference_format(self, kind: str) -> None:
        assert REFERENCE_PATTERN.match(generate_payment_reference(kind))

    def test_time_segment_encodes_the_clock(self) -> None:
        ref = generate_payment_reference("WDR", now_ms=1_760_000_000_000)
        _, _, stamp, _ = ref.split("-")
        assert int(stamp, 36) == 1_760_000_000_000

    def test_same_millisecond_references_differ(self) -> None:
        refs = {generate_payment_reference("DEP", now_ms=1) for _ in range(50)}
        assert len(refs) == 50

    def test_uuid_reference(self) -> None:
        assert uuid.UUID(generate_uuid()).version == 4


class TestUtcNow:
    def test_returns_aware_datetime(self) -> None:
        now = utc_now()
        assert isinstance(now, datetime)
        assert now.tzinfo is not None

    def test_is_utc(self) -> None:
        now = utc_now()
        assert now.tzinfo == UTC

"""
Tests for core helpers: money formatting and reference numbers.
"""

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

import pytest

from core.helpers import (
    format_minor_units,
    generate_reference_number,
    get_client_ip,
    last_digits,
    to_minor_units,
)


class TestMoney:
    @pytest.mark.parametrize(
        "amount,expected",
        [(29900, "299.00"), (5, "0.05"), (0, "0.00"), (None, "0.00"), (100000001, "1000000.01")],
    )
    def test_format_minor_units(self, amount, expected):
        assert format_minor_units(amount) == expected

    @pytest.mark.parametrize(
        "amount,expected",
        [(Decimal("299.00"), 29900), ("0.01", 1), ("99.9", 9990)],
    )
    def test_to_minor_units(self, amount, expected):
        assert to_minor_units(amount) == expected


class TestReferenceNumbers:
    def test_layout(self):
        now = datetime(2025, 6, 15, 4, 0, tzinfo=dt_timezone.utc)

        number = generate_reference_number("REF", "0042", "5678", now=now)

        assert number.startswith("REF")
        assert number[11:19] == "00425678"
        assert len(number) == len("REF") + 8 + 8 + 4
        assert number[-4:].isdigit()

    def test_numbers_differ(self):
        numbers = {generate_reference_number("ORD", digits=8) for _ in range(20)}

        assert len(numbers) == 20


class TestRequestHelpers:
    def test_last_digits(self):
        assert last_digits("ORD2025061512345678") == "5678"
        assert last_digits(7) == "0007"
        assert last_digits(None) == "0000"

    def test_client_ip_prefers_forwarded_for(self, rf):
        request = rf.post("/", HTTP_X_FORWARDED_FOR="203.0.113.9, 10.0.0.1", REMOTE_ADDR="10.0.0.1")

        assert get_client_ip(request) == "203.0.113.9"

    def test_client_ip_falls_back_to_remote_addr(self, rf):
        assert get_client_ip(rf.get("/", REMOTE_ADDR="198.51.100.4")) == "198.51.100.4"

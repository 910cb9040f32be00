import pytest

from tierwatch.utils import format_currency, format_percent, short_address
from tierwatch.utils.formatting import format_signed_currency


@pytest.mark.parametrize("value, expected", [
    (1234.5, "$1,234.50"),
    (0, "$0.00"),
    (0.00012345, "$0.000123"),
    (1234567.891, "$1,234,567.891"),
    (-42, "-$42.00"),
])
def test_format_currency(value, expected):
    assert format_currency(value) == expected


def test_signed_currency():
    assert format_signed_currency(5) == "+$5.00"
    assert format_signed_currency(-5) == "-$5.00"


def test_percent():
    assert format_percent(3) == "+3.00%"
    assert format_percent(-1.234, signed=False) == "-1.23%"


def test_short_address():
    assert short_address("0x1234567890abcdef") == "0x1234...cdef"
    assert short_address("BASE_TOKEN") == "BASE_TOKEN"

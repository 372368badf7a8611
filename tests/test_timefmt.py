from datetime import datetime, timezone

import pytest

from beeper.errors import ParseError
from beeper.timefmt import canonical, format_local, parse_local, to_minute


def test_parses_space_and_t_separators():
    assert parse_local("2099-01-01 10:00") == datetime(2099, 1, 1, 10, 0)
    assert parse_local("2099-01-01T10:00") == datetime(2099, 1, 1, 10, 0)


def test_zone_marked_value_becomes_naive_local():
    expected = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    parsed = parse_local("2024-01-01T10:00:00Z")
    assert parsed == expected
    assert parsed.tzinfo is None


@pytest.mark.parametrize("value", [None, "", "   ", "tomorrow", "2099-13-01 10:00"])
def test_rejects_unparseable(value):
    with pytest.raises(ParseError):
        parse_local(value)


def test_canonical_truncates_to_minute():
    assert canonical("2099-01-01T10:05:59.123") == "2099-01-01 10:05"
    assert format_local(to_minute(datetime(2099, 1, 1, 7, 3, 9))) == "2099-01-01 07:03"

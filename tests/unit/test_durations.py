"""
Unit tests for duration and memory parsing.
"""
import pytest

from devtopo.UTILS.durations import parse_duration, parse_memory, to_nanoseconds


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize("value, expected", [
        ("30s", 30.0),
        ("1m30s", 90.0),
        ("500ms", 0.5),
        ("1h", 3600.0),
        ("2h45m", 9900.0),
        ("1.5s", 1.5),
        ("10", 10.0),
        (5, 5.0),
        (0.25, 0.25),
    ])
    def test_valid_durations(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "10x", "s10", "1m 30s", -1, True])
    def test_invalid_durations(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestToNanoseconds:
    def test_seconds_to_nanoseconds(self):
        assert to_nanoseconds("1s") == 1_000_000_000
        assert to_nanoseconds("1m30s") == 90_000_000_000
        assert to_nanoseconds("500ms") == 500_000_000

    def test_none_passes_through(self):
        assert to_nanoseconds(None) is None


class TestParseMemory:
    @pytest.mark.parametrize("value, expected", [
        ("512m", 512 * 1024 ** 2),
        ("2g", 2 * 1024 ** 3),
        ("64k", 64 * 1024),
        ("100", 100),
        ("1gb", 1024 ** 3),
        (4096, 4096),
    ])
    def test_sizes(self, value, expected):
        assert parse_memory(value) == expected

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            parse_memory("lots")

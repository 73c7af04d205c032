"""Tests for formatting utilities."""

import pytest

from procscope.formatting import format_bytes, format_fraction, format_speed, parse_cpu_list


class TestFormatBytes:
    """Tests for format_bytes."""

    def test_small_values_stay_in_bytes(self) -> None:
        assert format_bytes(0) == "0 B"
        assert format_bytes(1023) == "1023 B"

    def test_binary_units(self) -> None:
        assert format_bytes(1536) == "1.5 KiB"
        assert format_bytes(5 * 1024 * 1024) == "5.0 MiB"
        assert format_bytes(3 * 1024**3) == "3.0 GiB"

    def test_largest_unit_caps(self) -> None:
        """Values past TiB stay in TiB."""
        assert format_bytes(2048 * 1024**4) == "2048.0 TiB"

    def test_unavailable(self) -> None:
        assert format_bytes(None) == "-"


class TestFormatSpeed:
    """Tests for format_speed."""

    def test_per_second_suffix(self) -> None:
        assert format_speed(2048.7) == "2.0 KiB/s"

    def test_unavailable(self) -> None:
        assert format_speed(None) == "-"


class TestFormatFraction:
    """Tests for format_fraction."""

    def test_percentage(self) -> None:
        assert format_fraction(0.25) == "25.0%"
        assert format_fraction(0.0) == "0.0%"

    def test_unavailable(self) -> None:
        assert format_fraction(None) == "-"


class TestParseCpuList:
    """Tests for parse_cpu_list."""

    def test_single_and_ranges(self) -> None:
        assert parse_cpu_list("0,2-3", 4) == (True, False, True, True)

    def test_whitespace_and_empty_parts(self) -> None:
        assert parse_cpu_list(" 1 , ,3", 4) == (False, True, False, True)

    def test_duplicates_collapse(self) -> None:
        assert parse_cpu_list("0-1,1", 2) == (True, True)

    @pytest.mark.parametrize("text", ["a", "1-", "3-1", "-1", "0,4"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_cpu_list(text, 4)

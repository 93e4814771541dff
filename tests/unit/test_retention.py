"""
Unit tests for retention bookkeeping (backupper/components/retention.py).
"""

from datetime import datetime

import pytest

from backupper.components.retention import (
    RemotePackage,
    format_timestamp,
    parse_timestamp,
    select_expired,
)


def packages(*timestamps):
    return [RemotePackage('nightly', timestamp, f'backups/nightly/{timestamp}') for timestamp in timestamps]


class TestTimestamps:
    """Test package timestamp format."""

    def test_format_timestamp(self):
        assert format_timestamp(datetime(2024, 1, 5, 2, 3, 4)) == '2024.01.05.02.03.04'

    def test_parse_timestamp(self):
        assert parse_timestamp('2024.01.05.02.03.04') == datetime(2024, 1, 5, 2, 3, 4)

    @pytest.mark.parametrize('text', ['latest', '2024-01-05', '', None])
    def test_parse_invalid_timestamp(self, text):
        assert parse_timestamp(text) is None


class TestSelectExpired:
    """Test select_expired."""

    def test_keeps_newest(self):
        found = packages(
            '2024.01.03.02.00.00',
            '2024.01.01.02.00.00',
            '2024.01.05.02.00.00',
            '2024.01.02.02.00.00',
            '2024.01.04.02.00.00',
        )

        expired = select_expired(found, 2)

        assert [package.timestamp for package in expired] == [
            '2024.01.01.02.00.00',
            '2024.01.02.02.00.00',
            '2024.01.03.02.00.00',
        ]

    def test_nothing_to_remove(self):
        assert select_expired(packages('2024.01.01.02.00.00'), 3) == []
        assert select_expired([], 1) == []

    def test_keep_none_removes_nothing(self):
        assert select_expired(packages('2024.01.01.02.00.00', '2024.01.02.02.00.00'), None) == []

    def test_keep_zero_removes_all(self):
        assert len(select_expired(packages('2024.01.01.02.00.00', '2024.01.02.02.00.00'), 0)) == 2

    def test_negative_keep(self):
        with pytest.raises(ValueError):
            select_expired([], -1)

    def test_timestamp_order_crosses_years(self):
        expired = select_expired(packages('2024.12.31.23.59.59', '2025.01.01.00.00.00'), 1)

        assert [package.timestamp for package in expired] == ['2024.12.31.23.59.59']

"""Tests for candle loading."""

from datetime import datetime, timezone

import pytest

from dualbrain.data import Bar, load_csv_file


def _write(path, rows):
    lines = ['timestamp,open,high,low,close,volume', *rows]
    path.write_text('\n'.join(lines) + '\n')


class TestBar:
    def test_range(self):
        bar = Bar('X', datetime(2024, 1, 1, tzinfo=timezone.utc), 10.0, 12.0, 9.0, 11.0, 100.0)
        assert bar.range == 3.0

    def test_inconsistent_prices_rejected(self):
        with pytest.raises(ValueError):
            Bar('X', datetime(2024, 1, 1, tzinfo=timezone.utc), 10.0, 9.0, 11.0, 10.0, 100.0)
        with pytest.raises(ValueError):
            Bar('X', datetime(2024, 1, 1, tzinfo=timezone.utc), 10.0, 12.0, 9.0, 13.0, 100.0)
        with pytest.raises(ValueError):
            Bar('X', datetime(2024, 1, 1, tzinfo=timezone.utc), 10.0, 12.0, 9.0, 11.0, -1.0)


class TestLoadCsvFile:
    def test_loads_sorted_utc_bars(self, tmp_path):
        path = tmp_path / 'EURUSD.csv'
        _write(
            path,
            [
                '2024-01-01 10:01:00,1.1,1.2,1.0,1.15,10',
                '2024-01-01 10:00:00,1.0,1.1,0.9,1.05,20',
            ],
        )

        bars = load_csv_file(path, 'EURUSD')
        assert [bar.close for bar in bars] == [1.05, 1.15]
        assert bars[0].timestamp.tzinfo is not None
        assert bars[0].timestamp.utcoffset().total_seconds() == 0
        assert bars[0].symbol == 'EURUSD'

    def test_invalid_rows_skipped(self, tmp_path):
        path = tmp_path / 'bad.csv'
        _write(
            path,
            [
                '2024-01-01 10:00:00,1.0,1.1,0.9,1.05,20',
                '2024-01-01 10:01:00,1.0,0.8,0.9,1.05,20',  # high < low
                '2024-01-01 10:02:00,-1.0,1.1,0.9,1.05,20',  # negative price
                '2024-01-01 10:03:00,1.0,1.1,0.9,,20',  # missing close
                '2024-01-01 10:04:00,1.0,1.1,0.9,1.0,5',
            ],
        )

        bars = load_csv_file(path, 'X')
        assert len(bars) == 2

    def test_missing_columns(self, tmp_path):
        path = tmp_path / 'short.csv'
        path.write_text('timestamp,open,close\n2024-01-01,1.0,1.0\n')
        with pytest.raises(ValueError):
            load_csv_file(path, 'X')

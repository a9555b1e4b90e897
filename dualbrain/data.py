"""
Candle structures and loading utilities for pre-training windows.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('open', 'high', 'low', 'close', 'volume')


@dataclass(frozen=True)
class Bar:
    """Single OHLCV bar."""

    __slots__ = ('symbol', 'timestamp', 'open', 'high', 'low', 'close', 'volume')

    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self):
        """Validate bar data."""
        if self.high < self.low:
            raise ValueError(f'High ({self.high}) < Low ({self.low})')
        if self.open < self.low or self.open > self.high:
            raise ValueError(f'Open ({self.open}) outside High/Low range')
        if self.close < self.low or self.close > self.high:
            raise ValueError(f'Close ({self.close}) outside High/Low range')
        if self.volume < 0:
            raise ValueError(f'Volume cannot be negative: {self.volume}')

    @property
    def range(self) -> float:
        return self.high - self.low


def load_csv_file(file_path: Path | str, symbol: str, tz: timezone | None = None) -> list[Bar]:
    """
    Load a single CSV file and return list of Bars.

    The first column is the timestamp index; ``open``, ``high``, ``low``,
    ``close`` and ``volume`` columns are required. Rows with missing values
    are dropped; rows with non-positive or inconsistent prices are skipped
    with a warning.

    Args:
        file_path: Path to CSV file
        symbol: Symbol name
        tz: Timezone (optional, defaults to UTC)

    Returns:
        List of Bar objects in chronological order
    """
    df = pd.read_csv(file_path, index_col=0, parse_dates=True)

    target_tz = tz if tz is not None else timezone.utc
    index = pd.to_datetime(df.index)
    if index.tz is None:
        df.index = index.tz_localize(target_tz)
    else:
        df.index = index.tz_convert(target_tz)

    df.columns = [str(col).strip().lower() for col in df.columns]
    if not all(col in df.columns for col in REQUIRED_COLUMNS):
        raise ValueError(f'Missing required columns in {file_path}')

    df = df.sort_index()
    df = df[~df.index.duplicated(keep='last')]
    df = df.dropna(subset=list(REQUIRED_COLUMNS))

    bars: list[Bar] = []
    for timestamp, row in df.iterrows():
        try:
            values = [float(row[col]) for col in REQUIRED_COLUMNS]
            if not all(math.isfinite(value) for value in values):
                raise ValueError('non-finite bar values')
            open_value, high_value, low_value, close_value, volume_value = values
            if min(open_value, high_value, low_value, close_value) <= 0:
                raise ValueError(
                    f'Invalid prices: open={open_value}, high={high_value}, low={low_value}, close={close_value}'
                )
            bars.append(
                Bar(
                    symbol=symbol,
                    timestamp=timestamp.to_pydatetime(),
                    open=open_value,
                    high=high_value,
                    low=low_value,
                    close=close_value,
                    volume=volume_value,
                )
            )
        except (TypeError, ValueError) as exc:
            logger.warning(f'Skipping invalid bar for {symbol} at {timestamp}: {exc}')

    return bars

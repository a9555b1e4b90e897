"""
Binary persistence of learned state.

File layout (little endian), one file per instrument::

    header   : magic b'DBRN', u16 version, u32 n_states, u32 n_actions
    trend    : f64[n_states * n_actions] Q-table
               f64[n_states * n_actions] eligibility traces
               f64 accuracy, i64 trade_count, u8 initialized
    reversal : same layout as trend
    profile  : f64 avg_daily_range, f64 spike_probability, f64 reversion_speed,
               f64 trend_persistence, f64 session_volatility[3], i64 sample_count

Any short read, trailing bytes or header mismatch rejects the whole file.
"""

from __future__ import annotations

import contextlib
import logging
import math
import struct
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import numpy as np

from .brain import NUM_ACTIONS, Brain
from .features import NUM_STATES
from .profile import SymbolProfile

logger = logging.getLogger(__name__)

MAGIC = b'DBRN'
FORMAT_VERSION = 1

_HEADER = struct.Struct('<4sHII')
_BRAIN_SCALARS = struct.Struct('<dqB')
_PROFILE = struct.Struct('<7dq')
_TABLE_BYTES = NUM_STATES * NUM_ACTIONS * 8
_BRAIN_BYTES = 2 * _TABLE_BYTES + _BRAIN_SCALARS.size
FILE_SIZE = _HEADER.size + 2 * _BRAIN_BYTES + _PROFILE.size


class CorruptStateError(ValueError):
    """Raised when a state file does not match the fixed layout."""


@dataclass
class BrainRecord:
    q_table: np.ndarray
    traces: np.ndarray
    accuracy: float
    trade_count: int
    initialized: bool

    @classmethod
    def from_brain(cls, brain: Brain) -> BrainRecord:
        return cls(brain.q_table, brain.traces, brain.accuracy, brain.trade_count, brain.initialized)

    def apply_to(self, brain: Brain) -> None:
        brain.q_table[:] = self.q_table
        brain.traces[:] = self.traces
        brain.accuracy = self.accuracy
        brain.trade_count = self.trade_count
        brain.initialized = self.initialized


def encode_state(trend: Brain, reversal: Brain, profile: SymbolProfile) -> bytes:
    parts = [_HEADER.pack(MAGIC, FORMAT_VERSION, NUM_STATES, NUM_ACTIONS)]
    for brain in (trend, reversal):
        parts.append(np.ascontiguousarray(brain.q_table, dtype='<f8').tobytes())
        parts.append(np.ascontiguousarray(brain.traces, dtype='<f8').tobytes())
        parts.append(_BRAIN_SCALARS.pack(float(brain.accuracy), int(brain.trade_count), int(bool(brain.initialized))))
    parts.append(
        _PROFILE.pack(
            profile.avg_daily_range,
            profile.spike_probability,
            profile.reversion_speed,
            profile.trend_persistence,
            *profile.session_volatility,
            int(profile.sample_count),
        )
    )
    return b''.join(parts)


def _read_table(payload: bytes, offset: int) -> np.ndarray:
    table = np.frombuffer(payload, dtype='<f8', count=NUM_STATES * NUM_ACTIONS, offset=offset)
    if not np.all(np.isfinite(table)):
        raise CorruptStateError('non-finite value in table')
    return table.reshape(NUM_STATES, NUM_ACTIONS).astype(np.float64)


def _decode_brain(payload: bytes, offset: int) -> tuple[BrainRecord, int]:
    q_table = _read_table(payload, offset)
    offset += _TABLE_BYTES
    traces = _read_table(payload, offset)
    offset += _TABLE_BYTES
    accuracy, trade_count, initialized = _BRAIN_SCALARS.unpack_from(payload, offset)
    offset += _BRAIN_SCALARS.size
    if not (math.isfinite(accuracy) and 0.0 <= accuracy <= 1.0):
        raise CorruptStateError(f'accuracy out of range: {accuracy}')
    if trade_count < 0 or initialized not in (0, 1):
        raise CorruptStateError('invalid brain counters')
    return BrainRecord(q_table, traces, accuracy, trade_count, bool(initialized)), offset


def decode_state(payload: bytes) -> tuple[BrainRecord, BrainRecord, SymbolProfile]:
    """
    Parse a complete state file.

    Raises:
        CorruptStateError: If the payload does not match the fixed layout
    """
    if len(payload) != FILE_SIZE:
        raise CorruptStateError(f'expected {FILE_SIZE} bytes, got {len(payload)}')

    magic, version, n_states, n_actions = _HEADER.unpack_from(payload, 0)
    if magic != MAGIC or version != FORMAT_VERSION:
        raise CorruptStateError(f'unrecognised header {magic!r} v{version}')
    if (n_states, n_actions) != (NUM_STATES, NUM_ACTIONS):
        raise CorruptStateError(f'table shape {n_states}x{n_actions} != {NUM_STATES}x{NUM_ACTIONS}')

    offset = _HEADER.size
    trend, offset = _decode_brain(payload, offset)
    reversal, offset = _decode_brain(payload, offset)

    values = _PROFILE.unpack_from(payload, offset)
    if not all(math.isfinite(value) for value in values[:7]) or values[7] < 0:
        raise CorruptStateError('invalid profile record')
    profile = SymbolProfile(
        avg_daily_range=values[0],
        spike_probability=values[1],
        reversion_speed=values[2],
        trend_persistence=values[3],
        session_volatility=list(values[4:7]),
        sample_count=values[7],
    )
    return trend, reversal, profile


def _atomic_write_bytes(data: bytes, filepath: Path) -> None:
    """
    Atomic write with backup.

    1. Write to a temporary file
    2. Move the existing file (if any) to ``.backup``
    3. Atomically rename the temporary file into place
    4. Remove the temporary file on every path
    """
    temp_path = filepath.with_suffix('.tmp')
    backup_path = filepath.with_suffix('.backup')

    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with temp_path.open('wb') as handle:
            handle.write(data)

        if filepath.exists():
            filepath.replace(backup_path)

        temp_path.replace(filepath)

    except OSError as exc:
        raise RuntimeError(f'Atomic write failed for {filepath}: {exc}') from exc

    finally:
        # exists() itself raises when the parent is not a directory
        with contextlib.suppress(OSError):
            if temp_path.exists():
                temp_path.unlink()


class PersistenceStore:
    """
    Saves and restores both brains and the symbol profile.

    Responsibilities:
    - Serialize learned state to a per-instrument binary file
    - Atomic writes with backup
    - All-or-nothing loading with backup fallback
    - Autosave timer evaluated from the tick clock
    """

    SUFFIX = '.brain'

    def __init__(self, directory: Path | str, symbol: str, autosave_interval_seconds: float = 3600.0):
        if not symbol or any(sep in symbol for sep in ('/', '\\')):
            raise ValueError(f'symbol must be a plain instrument name, got {symbol!r}')
        self.directory = Path(directory)
        self.symbol = symbol
        self.autosave_interval_seconds = autosave_interval_seconds

    @property
    def path(self) -> Path:
        return self.directory / f'{self.symbol}{self.SUFFIX}'

    @property
    def backup_path(self) -> Path:
        return self.path.with_suffix('.backup')

    def save(self, trend: Brain, reversal: Brain, profile: SymbolProfile) -> bool:
        """Best-effort save; failures are logged and reported as False."""
        try:
            _atomic_write_bytes(encode_state(trend, reversal, profile), self.path)
        except (RuntimeError, OSError, struct.error) as exc:
            logger.error(f'Saving learned state for {self.symbol} failed: {exc}', exc_info=True)
            return False
        logger.info(
            f'Learned state saved to {self.path}',
            extra={'trend_trades': trend.trade_count, 'reversal_trades': reversal.trade_count},
        )
        return True

    def _read(self, path: Path) -> tuple[BrainRecord, BrainRecord, SymbolProfile] | None:
        if not path.exists():
            return None
        try:
            with path.open('rb') as handle:
                payload = handle.read()
            return decode_state(payload)
        except (OSError, CorruptStateError, struct.error) as exc:
            logger.warning(f'Rejected state file {path}: {exc}')
            return None

    def load(self, trend: Brain, reversal: Brain, profile: SymbolProfile) -> bool:
        """
        Restore learned state.

        Targets are only modified when a file parses completely; a partial or
        corrupt primary falls back to the backup, and if both fail nothing is
        touched and False is returned.
        """
        records = self._read(self.path)
        if records is None:
            records = self._read(self.backup_path)
            if records is not None:
                logger.info(f'Loaded learned state from backup {self.backup_path}')
        if records is None:
            logger.info(f'No usable learned state for {self.symbol}; starting fresh')
            return False

        trend_record, reversal_record, loaded_profile = records
        trend_record.apply_to(trend)
        reversal_record.apply_to(reversal)
        profile.avg_daily_range = loaded_profile.avg_daily_range
        profile.spike_probability = loaded_profile.spike_probability
        profile.reversion_speed = loaded_profile.reversion_speed
        profile.trend_persistence = loaded_profile.trend_persistence
        profile.session_volatility = list(loaded_profile.session_volatility)
        profile.sample_count = loaded_profile.sample_count
        logger.info(
            f'Learned state loaded for {self.symbol}',
            extra={'trend_trades': trend.trade_count, 'reversal_trades': reversal.trade_count},
        )
        return True

    def autosave_due(self, last_save_time: datetime | None, now: datetime) -> bool:
        if last_save_time is None:
            return True
        return (now - last_save_time).total_seconds() >= self.autosave_interval_seconds

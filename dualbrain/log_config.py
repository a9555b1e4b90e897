"""
Logging setup for the engine and its command-line entry point.

Every record passing through a configured handler is stamped with the
instrument it belongs to, so the output of several engines sharing a process
can be told apart. Two renderings are available: a plain text line and one
JSON object per record.
"""

from __future__ import annotations

import enum
import json
import logging
from datetime import datetime, timezone

import numpy as np

TEXT_FORMAT = '%(asctime)s %(levelname)-7s [%(symbol)s] %(name)s: %(message)s'

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_RECORD_FIELDS = frozenset(logging.makeLogRecord({}).__dict__) | {'message', 'asctime', 'symbol'}


class SymbolFilter(logging.Filter):
    """Attach the instrument symbol to records that do not already name one."""

    def __init__(self, symbol: str):
        super().__init__()
        self.symbol = symbol

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'symbol'):
            record.symbol = self.symbol
        return True


def _to_json(value: object) -> object:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """
    Render a record as a single JSON object.

    The timestamp is taken from the record itself. Fields passed with
    ``extra=`` (learning-rate scale, trade counts, validation error and so on)
    appear at the top level; numpy scalars and brain kinds are converted to
    plain JSON values.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'symbol': getattr(record, 'symbol', None),
            'logger': record.name,
            'msg': record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_FIELDS:
                payload[key] = value
        if record.exc_info:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_to_json)


def configure_logger(
    name: str, level: str = 'INFO', structured: bool = False, symbol: str = '-'
) -> logging.Logger:
    """
    Install one stream handler on a logger, replacing any earlier ones.

    Args:
        name: Logger name ('dualbrain' covers every engine module)
        level: Level name such as DEBUG or WARNING
        structured: Emit JSON lines instead of text
        symbol: Instrument stamped on records that carry none

    Returns:
        The configured logger
    """
    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        raise ValueError(f'unknown log level {level!r}')

    logger = logging.getLogger(name)
    logger.setLevel(level_value)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.addFilter(SymbolFilter(symbol))
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    return logger

"""
Runtime settings helpers for environment-driven configuration.

Every knob of :class:`EngineConfig` can be overridden with a
``DUALBRAIN_<FIELD>`` variable (for example ``DUALBRAIN_LEARNING_RATE=0.05``).
A ``.env`` file in the working directory is applied as defaults, explicit
environment variables stay authoritative.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path

from .config import EngineConfig

ENV_PREFIX = 'DUALBRAIN_'
_RESERVED = {'LOG_LEVEL', 'STATE_DIR', 'SYMBOL', 'STRUCTURED_LOGS'}


@dataclass(frozen=True)
class RuntimeSettings:
    """Top-level runtime settings consumed by the CLI and embedding hosts."""

    log_level: str
    structured_logs: bool
    state_dir: Path
    symbol: str
    engine: EngineConfig


def load_runtime_settings(env: Mapping[str, str] | None = None) -> RuntimeSettings:
    """
    Parse runtime settings from environment variables.

    Args:
        env: Optional mapping for testability. Defaults to os.environ.
    """
    source = _apply_dotenv_overrides(os.environ) if env is None else env

    log_level = (_clean_str(source.get(f'{ENV_PREFIX}LOG_LEVEL', 'INFO')) or 'INFO').upper()
    if log_level not in {'CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'}:
        raise ValueError(f'{ENV_PREFIX}LOG_LEVEL must be a logging level name, got {log_level!r}')

    structured_raw = (_clean_str(source.get(f'{ENV_PREFIX}STRUCTURED_LOGS')) or 'false').lower()
    structured_logs = structured_raw in {'1', 'true', 'yes', 'on'}

    state_dir = Path(_clean_str(source.get(f'{ENV_PREFIX}STATE_DIR')) or 'state')

    symbol = _clean_str(source.get(f'{ENV_PREFIX}SYMBOL')) or 'DEFAULT'
    if any(sep in symbol for sep in ('/', '\\')) or symbol in {'.', '..'}:
        raise ValueError(f'{ENV_PREFIX}SYMBOL must be a plain instrument name, got {symbol!r}')

    overrides: dict[str, str] = {}
    knob_names = {field_info.name for field_info in fields(EngineConfig)}
    for key, value in source.items():
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        if suffix in _RESERVED:
            continue
        name = suffix.lower()
        if name in knob_names:
            cleaned = _clean_str(value)
            if cleaned is not None:
                overrides[name] = cleaned

    engine = EngineConfig.from_mapping(overrides)

    return RuntimeSettings(
        log_level=log_level,
        structured_logs=structured_logs,
        state_dir=state_dir,
        symbol=symbol,
        engine=engine,
    )


def _apply_dotenv_overrides(env: Mapping[str, str]) -> Mapping[str, str]:
    """Load `.env` from the current working directory (if present) and apply it as defaults."""
    dotenv = _load_dotenv_file(Path('.env'))
    if not dotenv:
        return env
    merged = dict(env)
    for key, value in dotenv.items():
        merged.setdefault(key, value)
    return merged


def _load_dotenv_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    try:
        raw = path.read_text(encoding='utf-8')
    except OSError:
        return {}

    parsed: dict[str, str] = {}
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        if stripped.startswith('export '):
            stripped = stripped[len('export ') :].lstrip()
        if '=' not in stripped:
            continue
        key, value = stripped.split('=', 1)
        key = key.strip()
        if not key:
            continue
        parsed[key] = _parse_dotenv_value(value)
    return parsed


def _parse_dotenv_value(raw: str) -> str:
    value = raw.strip()
    if not value:
        return ''
    quote = value[0]
    if quote in {'"', "'"}:
        if len(value) >= 2 and value[-1] == quote:
            return value[1:-1]
        return value[1:]

    for idx, char in enumerate(value):
        if char == '#' and idx > 0 and value[idx - 1].isspace():
            value = value[:idx].rstrip()
            break
    return value


def _clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None

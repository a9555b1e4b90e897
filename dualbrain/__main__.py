"""
Command-line entry point.

Usage:
    python -m dualbrain inspect [--state-dir DIR] [--symbol SYM]
    python -m dualbrain pretrain --csv FILE [--force] [--state-dir DIR] [--symbol SYM]
    python -m dualbrain simulate [--ticks N] [--seed S]

Defaults come from DUALBRAIN_* environment variables.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np

from .data import load_csv_file
from .engine import AdaptiveEngine
from .features import FeatureVector
from .log_config import configure_logger
from .persistence import PersistenceStore
from .runtime_settings import RuntimeSettings, load_runtime_settings
from .virtual import Direction

logger = logging.getLogger('dualbrain.cli')


def _build_engine(settings: RuntimeSettings, seed: int | None = None, persistent: bool = True) -> AdaptiveEngine:
    if not persistent:
        config = replace(settings.engine, enable_persistence=False)
        return AdaptiveEngine(config, rng=np.random.default_rng(seed))
    store = PersistenceStore(settings.state_dir, settings.symbol, settings.engine.autosave_interval_seconds)
    return AdaptiveEngine(settings.engine, store=store, rng=np.random.default_rng(seed))


def cmd_inspect(settings: RuntimeSettings, args: argparse.Namespace) -> int:
    engine = _build_engine(settings)
    engine.startup()
    if not engine.state.brains_loaded:
        logger.error(f'No learned state found in {settings.state_dir} for {settings.symbol}')
        return 1
    print(json.dumps(engine.get_stats(), indent=2, default=str))
    return 0


def cmd_pretrain(settings: RuntimeSettings, args: argparse.Namespace) -> int:
    bars = load_csv_file(args.csv, settings.symbol)
    if not bars:
        logger.error(f'No usable candles in {args.csv}')
        return 1

    engine = _build_engine(settings)
    engine.startup()
    if engine.state.brains_loaded and not args.force:
        logger.error(
            f'Learned state for {settings.symbol} already exists in {settings.state_dir}; '
            'pass --force to pre-train on top of it'
        )
        return 1
    result = engine.virtual.pre_train(bars, force=args.force)
    print(json.dumps(result, indent=2, default=str))
    if result['status'] != 'complete':
        return 1
    return 0 if engine.save() else 1


def cmd_simulate(settings: RuntimeSettings, args: argparse.Namespace) -> int:
    """Drive an in-memory engine with a seeded random walk; persisted state is never read or written."""
    rng = np.random.default_rng(args.seed)
    engine = _build_engine(settings, seed=args.seed, persistent=False)
    engine.startup()

    now = datetime.now(timezone.utc)
    price = 100.0
    spread = 0.01
    step = 0.05
    closed = 0
    for tick in range(args.ticks):
        now += timedelta(seconds=1)
        price = max(price + float(rng.normal(0.0, step)), step)

        if tick % 25 == 0:
            features = FeatureVector.from_mapping(
                {name: float(rng.uniform()) for name in FeatureVector.__dataclass_fields__}
            )
            decision = engine.decide(features, tag='simulated')
            if decision.allowed:
                direction = Direction.BUY if rng.uniform() < 0.5 else Direction.SELL
                risk = step * 10
                sl = price - direction.value * risk
                tp = price + direction.value * risk * 1.5
                engine.open_virtual(direction, price, sl, tp, 'simulated', features, decision.brain_kind, now=now)

        if tick % 100 == 0:
            engine.adapt(FeatureVector(), regime='above_start' if price >= 100.0 else 'below_start')

        closed += len(engine.on_tick(price - spread / 2, price + spread / 2, now=now))

    stats = engine.get_stats()
    stats['closed_trades'] = closed
    print(json.dumps(stats, indent=2, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog='dualbrain', description='Dual-brain adaptive decision engine')
    parser.add_argument('--state-dir', type=Path, default=None, help='Directory holding learned state files')
    parser.add_argument('--symbol', type=str, default=None, help='Instrument whose state to use')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('inspect', help='Print statistics of persisted learned state')

    pretrain = subparsers.add_parser('pretrain', help='Seed Q-tables from a CSV of candles and save them')
    pretrain.add_argument('--csv', type=Path, required=True, help='CSV with timestamp,open,high,low,close,volume')
    pretrain.add_argument(
        '--force', action='store_true', help='Pre-train even when learned state for the symbol already exists'
    )

    simulate = subparsers.add_parser('simulate', help='Run an in-memory engine against a seeded random walk')
    simulate.add_argument('--ticks', type=int, default=5000, help='Number of ticks to simulate')
    simulate.add_argument('--seed', type=int, default=None, help='Random seed')

    args = parser.parse_args(argv)

    try:
        settings = load_runtime_settings()
    except ValueError as exc:
        parser.error(str(exc))
    if args.state_dir is not None:
        settings = replace(settings, state_dir=args.state_dir)
    if args.symbol is not None:
        settings = replace(settings, symbol=args.symbol)

    configure_logger(
        'dualbrain', level=settings.log_level, structured=settings.structured_logs, symbol=settings.symbol
    )

    commands = {'inspect': cmd_inspect, 'pretrain': cmd_pretrain, 'simulate': cmd_simulate}
    return commands[args.command](settings, args)


if __name__ == '__main__':
    sys.exit(main())

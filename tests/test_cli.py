"""Tests for the command-line entry point."""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from dualbrain.__main__ import main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith('DUALBRAIN_'):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


def _write_candles(path, count=120):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    lines = ['timestamp,open,high,low,close,volume']
    for i in range(count):
        close = 100.0 + i * 0.5
        stamp = (start + timedelta(minutes=i)).strftime('%Y-%m-%d %H:%M:%S')
        lines.append(f'{stamp},{close - 0.2},{close + 0.6},{close - 0.6},{close},1000')
    path.write_text('\n'.join(lines) + '\n')


def test_inspect_without_state_fails(tmp_path):
    assert main(['--state-dir', str(tmp_path / 'state'), 'inspect']) == 1


def test_pretrain_then_inspect(tmp_path, capsys):
    csv_path = tmp_path / 'candles.csv'
    _write_candles(csv_path)
    state_dir = tmp_path / 'state'

    assert main(['--state-dir', str(state_dir), '--symbol', 'TEST', 'pretrain', '--csv', str(csv_path)]) == 0
    assert (state_dir / 'TEST.brain').exists()
    capsys.readouterr()

    assert main(['--state-dir', str(state_dir), '--symbol', 'TEST', 'inspect']) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats['trend']['states_visited'] > 0


def test_pretrain_refuses_existing_state_without_force(tmp_path, capsys):
    csv_path = tmp_path / 'candles.csv'
    _write_candles(csv_path)
    state_dir = tmp_path / 'state'
    args = ['--state-dir', str(state_dir), '--symbol', 'TEST', 'pretrain', '--csv', str(csv_path)]

    assert main(args) == 0
    saved = (state_dir / 'TEST.brain').read_bytes()

    assert main(args) == 1
    assert (state_dir / 'TEST.brain').read_bytes() == saved

    assert main(args + ['--force']) == 0
    assert (state_dir / 'TEST.brain').read_bytes() != saved


def test_simulate(tmp_path, capsys):
    state_dir = tmp_path / 'state'
    assert main(['--state-dir', str(state_dir), 'simulate', '--ticks', '300', '--seed', '1']) == 0
    stats = json.loads(capsys.readouterr().out)
    assert 'closed_trades' in stats
    assert not state_dir.exists()


def test_simulate_leaves_saved_state_alone(tmp_path, capsys):
    csv_path = tmp_path / 'candles.csv'
    _write_candles(csv_path)
    state_dir = tmp_path / 'state'
    assert main(['--state-dir', str(state_dir), '--symbol', 'TEST', 'pretrain', '--csv', str(csv_path)]) == 0
    saved = (state_dir / 'TEST.brain').read_bytes()

    assert main(['--state-dir', str(state_dir), '--symbol', 'TEST', 'simulate', '--ticks', '300', '--seed', '2']) == 0
    assert (state_dir / 'TEST.brain').read_bytes() == saved
    assert sorted(p.name for p in state_dir.iterdir()) == ['TEST.brain']

"""Tests for configuration loading."""

import json
from pathlib import Path

from swyft.config import CHUNK_SIZE, HIGH_WATER_MARK, LOW_WATER_MARK, Config, load_config


def test_defaults():
    config = Config()
    assert config.port == 3000
    assert config.chunk_size == CHUNK_SIZE == 65536
    assert config.high_water_mark == HIGH_WATER_MARK == 16 * 1024 * 1024
    assert config.low_water_mark == LOW_WATER_MARK == 4 * 1024 * 1024
    assert config.room_ttl == 600
    assert config.sweep_interval == 60
    assert config.gather_timeout == 2
    assert config.verify_size is False


def test_save_and_load_file(tmp_path):
    path = tmp_path / 'config.json'
    config = Config(port=4000, server_url='ws://example:4000/ws',
                    output_dir=Path('/tmp/out'), verify_size=True)
    config.save(path)

    assert json.loads(path.read_text())['port'] == 4000

    loaded = Config.from_file(path)
    assert loaded.port == 4000
    assert loaded.server_url == 'ws://example:4000/ws'
    assert loaded.output_dir == Path('/tmp/out')
    assert loaded.verify_size is True


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / 'missing.json') == Config()


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'port': 4000, 'room_ttl': 30}))
    monkeypatch.setenv('SWYFT_PORT', '5000')
    monkeypatch.setenv('SWYFT_VERIFY_SIZE', 'true')
    monkeypatch.setenv('SWYFT_ANSWER_TIMEOUT', '42')

    config = load_config(path)
    assert config.port == 5000
    assert config.room_ttl == 30
    assert config.verify_size is True
    assert config.answer_timeout == 42.0

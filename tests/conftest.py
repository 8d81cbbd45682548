"""Shared fixtures for the fpreader test suite."""
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeClock  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Point config persistence at a temp dir so tests never touch ~/.config."""
    config_dir = tmp_path / 'fpreader'
    monkeypatch.setattr('fpreader.conf.CONFIG_DIR', str(config_dir))
    monkeypatch.setattr('fpreader.conf.CONFIG_PATH', str(config_dir / 'config.json'))


@pytest.fixture
def clock():
    return FakeClock()

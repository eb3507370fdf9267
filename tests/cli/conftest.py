"""Fixtures for CLI tests."""

import pytest


@pytest.fixture(autouse=True)
def _wide_console(monkeypatch):
    """Keep rich tables from wrapping job ids and URLs."""
    monkeypatch.setenv("COLUMNS", "200")

"""
Pytest configuration and fixtures for sparkbot tests.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from sparkbot.settings import reset_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch) -> Iterator[None]:
    """Keep the developer's config file and environment out of every test."""
    monkeypatch.setenv("SPARKBOT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("SPARKBOT_CONFIG_FILE", raising=False)
    for name in ("WALLET__MNEMONIC", "WALLET__FACTORY", "NETWORK_CONFIG__NETWORK"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()

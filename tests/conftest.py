import os

import pytest

from txscribe.config import refresh_config


@pytest.fixture(autouse=True)
def clear_txscribe_env(monkeypatch):
    for key in [key for key in os.environ if key.startswith("TXSCRIBE_")]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("PYTHONHASHSEED", "0")
    refresh_config()
    yield
    refresh_config()

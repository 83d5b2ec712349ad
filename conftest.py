import shutil
from pathlib import Path

import pytest

from backend import storage

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture(autouse=True)
def clean_test_data(monkeypatch):
    """Wipe and re-init data-tests/ before every test."""
    for var in ("SENSITIVE_WORDS", "SENSITIVE_WORDS_PATH", "LLM_BASE_URL", "LLM_MODEL", "LLM_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    storage.init_storage(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it

"""
Shared pytest fixtures for mediashelf tests.

Every test gets its own store directory; nothing touches ~/.mediashelf.
"""

from pathlib import Path

import pytest

from mediashelf.api import Catalog
from mediashelf.config import StoreConfig
from mediashelf.types import Item


@pytest.fixture(autouse=True)
def isolated_store_env(tmp_path, monkeypatch):
    """Point the default store and error log at a temp directory."""
    monkeypatch.setenv("MEDIASHELF_STORE_PATH", str(tmp_path / "default-store"))
    monkeypatch.delenv("MEDIASHELF_VERBOSE", raising=False)


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def catalog(store_path):
    """An open file-backed catalog."""
    cat = Catalog(store_path).open()
    yield cat
    cat.close()


@pytest.fixture
def memory_catalog(tmp_path):
    """An open in-memory catalog (no database file)."""
    cat = Catalog(config=StoreConfig(path=tmp_path / "mem", database=":memory:")).open()
    yield cat
    cat.close()


def make_item(id: str, **fields) -> Item:
    """Item with plausible defaults for the fields a test doesn't care about."""
    defaults = dict(
        filename=f"{id}.png",
        original_path=f"/import/{id}.png",
        storage_path=f"/store/{id}.png",
        format="png",
        size=1000,
        width=64,
        height=64,
    )
    defaults.update(fields)
    return Item(id=id, **defaults)

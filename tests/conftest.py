"""Pytest configuration and shared fixtures for all tests."""

import json
from pathlib import Path

import pytest
import pytest_asyncio

from log_indexer.app.infrastructure.adapters.sqlalchemy_log_store import SqlAlchemyLogStore
from log_indexer.app.infrastructure.db.engine import create_app_async_engine
from log_indexer.app.infrastructure.decoders.abi_event_decoder import AbiEventDecoder

from tests.fakes import DOLLARDEX_ABI, FakeLogStore, Sleeps


@pytest.fixture
def abi_path(tmp_path: Path) -> Path:
    """ABI written to disk in artifact form ({"abi": [...]})."""
    path = tmp_path / "DollarDex.json"
    path.write_text(json.dumps({"contractName": "DollarDex", "abi": DOLLARDEX_ABI}), encoding="utf-8")
    return path


@pytest.fixture
def decoder() -> AbiEventDecoder:
    return AbiEventDecoder(abi=DOLLARDEX_ABI)


@pytest.fixture
def sleeps() -> Sleeps:
    return Sleeps()


@pytest.fixture
def fake_store() -> FakeLogStore:
    return FakeLogStore()


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    """Real SQLite-backed store in a temporary file."""
    engine = create_app_async_engine(db_path=tmp_path / "index.sqlite")
    log_store = SqlAlchemyLogStore(engine=engine)
    await log_store.init_schema()
    try:
        yield log_store
    finally:
        await engine.dispose()

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from store import TableStore


@pytest.fixture
def engine():
    """In-memory SQLite shared across connections."""
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return TableStore(engine)


@pytest.fixture
def conversation_id(store):
    return store.create_conversation("rider-1", "Réglage KTM")

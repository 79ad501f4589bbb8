"""Shared fixtures: an app over in-memory SQLite plus its collaborators."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from main import create_app
from services.session_registry import SessionRegistry
from storage import CellStore, create_db_engine, init_db


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> CellStore:
    return CellStore(engine)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, DATABASE_URL="sqlite://")


@pytest.fixture
def app(settings):
    return create_app(settings, engine=create_db_engine(settings.DATABASE_URL))


@pytest.fixture
def client(app):
    # One portal for every request and socket so they share an event loop
    with TestClient(app) as client:
        yield client

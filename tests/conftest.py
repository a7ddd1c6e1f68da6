"""
Shared test setup.

Points the app at an in-memory SQLite database (one shared connection via
StaticPool) before any bizos module is imported, and gives each test a
fresh schema.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_TO_FILE"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest

from bizos.models.base import SessionLocal, drop_db, init_db


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db()

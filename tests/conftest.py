"""Shared pytest fixtures for FocusPact tests."""

import sys
import pytest

from PyQt6.QtCore import QCoreApplication

from focuspact.database.db import configure_engine, init_db
from focuspact.settings import Settings, configure_settings
from focuspact.tasks import TASKS, TaskQueue


@pytest.fixture(scope="session")
def qapp():
    """A single QCoreApplication instance shared across the entire test run."""
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    yield app


@pytest.fixture(autouse=True)
def test_db():
    """Point every test at a fresh in-memory SQLite database and defaults."""
    configure_settings(Settings())
    configure_engine("sqlite:///:memory:")
    init_db()
    TASKS.clear()
    yield
    TASKS.clear()
    configure_settings(None)


@pytest.fixture
def settings():
    """The active settings object; tests may mutate it in place."""
    from focuspact.settings import get_settings
    return get_settings()


@pytest.fixture
def queue(qapp):
    """A private TaskQueue so tests can inspect what ingestion deferred."""
    return TaskQueue(parent=None)

"""Shared fixtures for stowage unit tests."""

from __future__ import annotations

import pytest

from stowage.component import get_identity_registry
from stowage.config import reset_config
from stowage.runtime import MemoryStore

_ENV_VARS = (
    "STOWAGE_LOG_LEVEL",
    "STOWAGE_LOG_DIR",
    "STOWAGE_TRACE_STORE",
    "STOWAGE_STRICT_QUERIES",
)


@pytest.fixture(autouse=True)
def identity_registry():
    """Start every test with an empty identity registry."""
    registry = get_identity_registry()
    registry.clear()
    yield registry
    registry.clear()


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Isolate tests from STOWAGE_* variables of the outer environment."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store():
    """A traced in-memory store."""
    return MemoryStore(trace=True)


@pytest.fixture
def calls(store):
    """Trace entries of ``store``, optionally filtered by operation and component class."""

    def filter_calls(operation=None, component_class=None):
        entries = store.get_trace()
        if operation is not None:
            entries = [entry for entry in entries if entry.operation == operation]
        if component_class is not None:
            entries = [
                entry
                for entry in entries
                if isinstance(entry.params.get("storable"), component_class)
                or entry.params.get("component_class") is component_class
            ]
        return entries

    return filter_calls

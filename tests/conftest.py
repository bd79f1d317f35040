"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so imports like
``import energy_assistant`` resolve correctly regardless of the working
directory pytest chooses, and provides a seeded SQLite telemetry store.
Shared doubles and fixture ids live in ``helpers``.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()

from energy_assistant.storage.engine import create_schema, make_engine  # noqa: E402
from helpers import FakeProvider, seed_telemetry  # noqa: E402


@pytest.fixture
def sqlite_engine(tmp_path):
    """File-backed SQLite engine with schema and seeded telemetry."""
    engine = make_engine(f"sqlite:///{tmp_path / 'energy.db'}")
    create_schema(engine)
    seed_telemetry(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def fake_provider_cls():
    return FakeProvider

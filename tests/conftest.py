"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio

import pytest

from iterforge.db.connection import Database
from iterforge.db.repository import Repository
from iterforge.db.schema import initialize
from iterforge.versions.store import VersionStore


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".iterforge.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def store(repo):
    return VersionStore(repo)


@pytest.fixture
def project(store):
    return asyncio.run(store.create_project("demo"))


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Run CLI commands inside tmp_path with no global config and no model env overrides."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("iterforge.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for name in (
        "ITERFORGE_GENERATION_MODEL",
        "ITERFORGE_CLASSIFIER_MODEL",
        "ITERFORGE_EMBEDDING_MODEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path

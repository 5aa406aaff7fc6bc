"""Integration test fixtures.

Provides a fully wired AppState built by server.build_state on an in-memory
SQLite catalog, plus a small seed dataset and a subprocess environment for
the MCP wire tests.
"""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from icdlookup.config import Settings
from icdlookup.server import build_state

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from icdlookup.state import AppState

TOKEN_URL = "https://auth.icd.test/connect/token"
SEARCH_URL = "https://id.icd.test/icd/release/11/2024-01/mms/search"

SEED_ROWS = [
    {
        "code": "06",
        "title": "Trastornos mentales, del comportamiento o del neurodesarrollo",
        "uri": "http://id.who.int/icd/entity/334423054",
        "classKind": "chapter",
        "chapterCode": "06",
    },
    {
        "code": "",
        "title": "Trastornos de ansiedad o relacionados con el miedo",
        "uri": "http://id.who.int/icd/entity/1336943699",
        "classKind": "block",
        "chapterCode": "06",
    },
    {
        "code": "6B00",
        "title": "Trastorno de ansiedad generalizada",
        "uri": "http://id.who.int/icd/entity/1712535455",
        "classKind": "category",
        "chapterCode": "06",
    },
    {
        "code": "6B01",
        "title": "Trastorno de pánico",
        "uri": "http://id.who.int/icd/entity/1616616016",
        "classKind": "category",
        "chapterCode": "06",
    },
]


@pytest.fixture()
def seed_dataset(tmp_path: Path) -> Path:
    path = tmp_path / "icd11_mms_es.json"
    path.write_text(json.dumps(SEED_ROWS, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture()
def settings(credentials_file: Path, seed_dataset: Path) -> Settings:
    return Settings(
        registry={"token_url": TOKEN_URL, "base_url": "https://id.icd.test"},
        credentials={"path": str(credentials_file)},
        catalog={"db_path": ":memory:", "seed_path": str(seed_dataset)},
    )


@pytest.fixture()
async def app_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Full AppState wired the way the server lifespan wires it."""
    async with aiosqlite.connect(":memory:") as db:
        state = await build_state(settings, db)
        try:
            yield state
        finally:
            if state.http_client is not None:
                await state.http_client.aclose()


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Points every path at an isolated tmp directory: no credentials file and
    no seed dataset, so no test ever reaches the real ICD-API.
    """
    env = os.environ.copy()
    env["ICDLOOKUP__CATALOG__DB_PATH"] = str(tmp_path / "catalog.db")
    env["ICDLOOKUP__CATALOG__SEED_PATH"] = str(tmp_path / "absent-seed.json")
    env["ICDLOOKUP__CREDENTIALS__PATH"] = str(tmp_path / "absent-credentials.yaml")
    env["ICDLOOKUP__REGISTRY__TOKEN_URL"] = "http://127.0.0.1:1/connect/token"
    env["ICDLOOKUP__REGISTRY__BASE_URL"] = "http://127.0.0.1:1"
    env["ICDLOOKUP__LOGGING__LEVEL"] = "WARNING"
    return env

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import pytest

TEST_SNAPSHOT_ID = "TEST_SNAPSHOT_0001"
TEST_SNAPSHOT_CREATED_AT = "2026-01-01T00:00:00+00:00"
TEST_SNAPSHOT_SOURCE = "pytest_hermetic"
TEST_SNAPSHOT_SOURCE_URI = "local://pytest/catalog"
TEST_MANIFEST_JSON = '{"fixture":"cost_engine_test_db_path"}'


def _schema_sql_path() -> Path:
    return Path(__file__).resolve().parents[1] / "schemas" / "schema.sql"


def _is_valid_sqlite_db(path: str) -> bool:
    if not path or not os.path.isfile(path):
        return False
    with open(path, "rb") as f:
        header = f.read(16)
    return header.startswith(b"SQLite format 3")


@pytest.fixture
def cost_engine_test_db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    env_db_path = os.getenv("COST_ENGINE_DB_PATH", "")
    if _is_valid_sqlite_db(env_db_path):
        # Catalog fixture tests point COST_ENGINE_DB_PATH at their own DB;
        # leave it alone when it is already a real SQLite file.
        yield Path(env_db_path)
        return

    db_path = tmp_path / "cost_engine_test.sqlite"

    con = sqlite3.connect(str(db_path))
    try:
        con.executescript(_schema_sql_path().read_text(encoding="utf-8"))
        con.execute(
            """
            INSERT INTO snapshots (
              snapshot_id,
              created_at,
              source,
              source_uri,
              manifest_json
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (
                TEST_SNAPSHOT_ID,
                TEST_SNAPSHOT_CREATED_AT,
                TEST_SNAPSHOT_SOURCE,
                TEST_SNAPSHOT_SOURCE_URI,
                TEST_MANIFEST_JSON,
            ),
        )
        con.commit()
    finally:
        con.close()

    monkeypatch.setenv("COST_ENGINE_DB_PATH", str(db_path))
    yield db_path


@pytest.fixture(autouse=True)
def _use_cost_engine_test_db_path(cost_engine_test_db_path: Path) -> None:
    _ = cost_engine_test_db_path

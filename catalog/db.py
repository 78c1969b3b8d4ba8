import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List

from catalog.snapshot import CatalogSnapshot, CharacterEntry, EquipmentEntry

REPO_ROOT = Path(__file__).resolve().parents[1]
DB_PATH_ENV = "COST_ENGINE_DB_PATH"
DEFAULT_DB_PATH = (REPO_ROOT / "data" / "cost_engine.sqlite").resolve()
SCHEMA_PATH = (REPO_ROOT / "schemas" / "schema.sql").resolve()


def _configured_db_path() -> Path:
    raw = (os.getenv(DB_PATH_ENV) or "").strip()
    if raw == "":
        return DEFAULT_DB_PATH
    path = Path(raw).expanduser()
    if path.is_absolute():
        return path
    return (REPO_ROOT / path).resolve()


def resolve_db_path() -> Path:
    """Locate the catalog database. Relative overrides are anchored at the repo root."""
    path = _configured_db_path()
    if not path.is_file():
        raise RuntimeError(f"No catalog database at '{path}'; point {DB_PATH_ENV} at an existing SQLite file.")
    return path


class CatalogSnapshotNotFoundError(RuntimeError):
    code = "CATALOG_SNAPSHOT_NOT_FOUND"

    def __init__(self, snapshot_id: str | None):
        self.snapshot_id = snapshot_id if isinstance(snapshot_id, str) and snapshot_id else None
        super().__init__(f"Catalog snapshot not found: snapshot_id={self.snapshot_id}")

    def to_unknown(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "snapshot_id": self.snapshot_id,
            "message": "Catalog snapshot is missing; fetch a fresh catalog before importing or pricing.",
        }


def connect() -> sqlite3.Connection:
    con = sqlite3.connect(str(resolve_db_path()))
    con.row_factory = sqlite3.Row
    return con


def apply_schema(con: sqlite3.Connection, schema_path: Path = SCHEMA_PATH) -> None:
    con.executescript(schema_path.read_text(encoding="utf-8"))
    con.commit()


def snapshot_exists(snapshot_id: str) -> bool:
    with connect() as con:
        row = con.execute(
            "SELECT 1 FROM snapshots WHERE snapshot_id = ? LIMIT 1",
            (snapshot_id,)
        ).fetchone()
        return row is not None


def list_snapshots(limit: int = 20):
    with connect() as con:
        rows = con.execute(
            "SELECT snapshot_id, created_at, source, source_uri "
            "FROM snapshots ORDER BY created_at DESC, snapshot_id DESC LIMIT ?",
            (limit,)
        ).fetchall()
        return [dict(r) for r in rows]


def latest_snapshot_id() -> str | None:
    rows = list_snapshots(limit=1)
    if not rows:
        return None
    snapshot_id = rows[0].get("snapshot_id")
    return snapshot_id if isinstance(snapshot_id, str) and snapshot_id != "" else None


def _str_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value.strip() != "":
        return value.strip()
    return None


def load_catalog_snapshot(snapshot_id: str) -> CatalogSnapshot:
    token = snapshot_id.strip() if isinstance(snapshot_id, str) else ""
    if token == "":
        raise CatalogSnapshotNotFoundError(snapshot_id)

    with connect() as con:
        exists = con.execute(
            "SELECT 1 FROM snapshots WHERE snapshot_id = ? LIMIT 1",
            (token,),
        ).fetchone()
        if exists is None:
            raise CatalogSnapshotNotFoundError(token)

        character_rows = con.execute(
            """
            SELECT code, name, subname, rarity, image_ref, limited
            FROM characters
            WHERE snapshot_id = ?
            ORDER BY LOWER(name) ASC, name ASC, code ASC
            """,
            (token,),
        ).fetchall()
        equipment_rows = con.execute(
            """
            SELECT equipment_id, name, subname, rarity, limited, image_ref
            FROM equipment
            WHERE snapshot_id = ?
            ORDER BY LOWER(name) ASC, name ASC, equipment_id ASC
            """,
            (token,),
        ).fetchall()

    characters: List[CharacterEntry] = []
    for row in character_rows:
        row_dict = dict(row)
        code = _str_or_none(row_dict.get("code"))
        if code is None:
            continue
        characters.append(
            CharacterEntry(
                code=code,
                name=_str_or_none(row_dict.get("name")) or "",
                subname=_str_or_none(row_dict.get("subname")),
                rarity=int(row_dict.get("rarity") or 0),
                image_ref=_str_or_none(row_dict.get("image_ref")) or "",
                limited=bool(row_dict.get("limited")),
            )
        )

    equipment: List[EquipmentEntry] = []
    for row in equipment_rows:
        row_dict = dict(row)
        equipment_id = _str_or_none(row_dict.get("equipment_id"))
        if equipment_id is None:
            continue
        equipment.append(
            EquipmentEntry(
                id=equipment_id,
                name=_str_or_none(row_dict.get("name")) or "",
                subname=_str_or_none(row_dict.get("subname")),
                rarity=int(row_dict.get("rarity") or 0),
                limited=bool(row_dict.get("limited")),
                image_ref=_str_or_none(row_dict.get("image_ref")) or "",
            )
        )

    return CatalogSnapshot(
        snapshot_id=token,
        characters=tuple(characters),
        equipment=tuple(equipment),
    )


def write_catalog_snapshot(
    con: sqlite3.Connection,
    catalog: CatalogSnapshot,
    *,
    created_at: str,
    source: str | None = None,
    source_uri: str | None = None,
    manifest_json: str | None = None,
) -> None:
    """Insert a whole snapshot in one transaction so readers never see half of it."""
    cur = con.cursor()
    cur.execute("BEGIN;")
    try:
        cur.execute(
            """
            INSERT INTO snapshots (snapshot_id, created_at, source, source_uri, manifest_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            (catalog.snapshot_id, created_at, source, source_uri, manifest_json),
        )
        cur.executemany(
            """
            INSERT OR REPLACE INTO characters
            (snapshot_id, code, name, subname, rarity, image_ref, limited)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    catalog.snapshot_id,
                    entry.code,
                    entry.name,
                    entry.subname,
                    int(entry.rarity),
                    entry.image_ref,
                    1 if entry.limited else 0,
                )
                for entry in catalog.characters
            ],
        )
        cur.executemany(
            """
            INSERT OR REPLACE INTO equipment
            (snapshot_id, equipment_id, name, subname, rarity, limited, image_ref)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    catalog.snapshot_id,
                    entry.id,
                    entry.name,
                    entry.subname,
                    int(entry.rarity),
                    1 if entry.limited else 0,
                    entry.image_ref,
                )
                for entry in catalog.equipment
            ],
        )
    except sqlite3.Error:
        con.rollback()
        raise
    con.commit()

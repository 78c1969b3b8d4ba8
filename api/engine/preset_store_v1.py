import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List

from api.engine.constants import (
    CHARACTER_LEVELS,
    DEFAULT_MAX_PRESETS_PER_OWNER,
    EQUIPMENT_LEVELS,
    NEW_PROFILE_ID,
    PROFILE_NAME_MAX_LEN,
)
from api.engine.cost_profile_v1 import CostProfile, coerce_cost_matrix
from api.engine.utils import nonempty_str, safe_int, sha256_hex, stable_json_dumps

logger = logging.getLogger(__name__)


PRESET_STORE_VERSION = "preset_store_v1"


class PresetStoreError(RuntimeError):
    code = "PRESET_STORE_ERROR"

    def __init__(self, owner_id: str, message: str, preset_id: str | None = None):
        self.owner_id = owner_id
        self.preset_id = preset_id
        self.detail = message
        super().__init__(message)

    def to_unknown(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "owner_id": self.owner_id,
            "preset_id": self.preset_id,
            "message": self.detail,
        }


class PresetLimitError(PresetStoreError):
    code = "PRESET_LIMIT_REACHED"


class PresetNameConflictError(PresetStoreError):
    code = "PRESET_NAME_CONFLICT"


class PresetNotFoundError(PresetStoreError):
    code = "PRESET_NOT_FOUND"


def max_presets_per_owner() -> int:
    raw = os.getenv("COST_ENGINE_MAX_PRESETS_PER_OWNER")
    if raw is None or raw.strip() == "":
        return DEFAULT_MAX_PRESETS_PER_OWNER
    return max(1, safe_int(raw, default=DEFAULT_MAX_PRESETS_PER_OWNER))


def _connect(db_path: str) -> sqlite3.Connection:
    con = sqlite3.connect(str(db_path))
    con.row_factory = sqlite3.Row
    return con


def _ensure_schema(db_path: str) -> None:
    with _connect(db_path) as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS cost_presets (
              owner_id TEXT NOT NULL,
              preset_id TEXT NOT NULL,
              name TEXT NOT NULL,
              character_costs_json TEXT NOT NULL,
              equipment_costs_json TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              PRIMARY KEY (owner_id, preset_id)
            )
            """
        )
        con.execute(
            "CREATE INDEX IF NOT EXISTS idx_cost_presets_owner_created ON cost_presets(owner_id, created_at)"
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _name_key(name: str) -> str:
    return " ".join(name.split()).casefold()


def compute_preset_id_v1(owner_id: str, name: str, created_at: str) -> str:
    return sha256_hex(f"{owner_id}:{_name_key(name)}:{created_at}")[:16]


def _load_matrices(value: Any, length: int) -> Dict[str, List[float]]:
    if not isinstance(value, str):
        return {}
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(key): coerce_cost_matrix(parsed[key], length) for key in sorted(parsed.keys())}


def _row_to_profile(row: sqlite3.Row) -> CostProfile:
    return CostProfile(
        id=row["preset_id"],
        name=row["name"],
        character_costs=_load_matrices(row["character_costs_json"], CHARACTER_LEVELS),
        equipment_costs=_load_matrices(row["equipment_costs_json"], EQUIPMENT_LEVELS),
    )


def _owner_rows(con: sqlite3.Connection, owner_id: str) -> List[sqlite3.Row]:
    return con.execute(
        """
        SELECT preset_id, name, created_at, updated_at
        FROM cost_presets
        WHERE owner_id = ?
        ORDER BY created_at ASC, preset_id ASC
        """,
        (owner_id,),
    ).fetchall()


def save_preset(db_path: str, owner_id: str, profile: CostProfile, max_presets: int | None = None) -> Dict[str, Any]:
    """Insert a new preset, or update it when ``profile.id`` already belongs to the owner.

    Enforces the per-owner preset cap and case-insensitive name uniqueness.
    """

    owner = nonempty_str(owner_id)
    if owner is None:
        raise ValueError("owner_id is required to save a cost preset")

    name = nonempty_str(profile.name)
    if name is None:
        raise ValueError("cost preset name must be non-empty")
    name = name[:PROFILE_NAME_MAX_LEN]

    limit = max_presets if isinstance(max_presets, int) and max_presets > 0 else max_presets_per_owner()

    _ensure_schema(db_path)
    now = _now_iso()
    character_costs_json = stable_json_dumps(
        {code: coerce_cost_matrix(values, CHARACTER_LEVELS) for code, values in profile.character_costs.items()}
    )
    equipment_costs_json = stable_json_dumps(
        {key: coerce_cost_matrix(values, EQUIPMENT_LEVELS) for key, values in profile.equipment_costs.items()}
    )

    with _connect(db_path) as con:
        rows = _owner_rows(con, owner)
        existing_ids = set(row["preset_id"] for row in rows)
        is_update = profile.id != NEW_PROFILE_ID and profile.id in existing_ids
        preset_id = profile.id if is_update else compute_preset_id_v1(owner, name, now)

        for row in rows:
            if row["preset_id"] == preset_id:
                continue
            if _name_key(row["name"]) == _name_key(name):
                logger.warning(f"Rejected preset save for owner {owner}: name {name!r} already used")
                raise PresetNameConflictError(
                    owner,
                    f"A preset named '{row['name']}' already exists.",
                    preset_id=row["preset_id"],
                )

        if not is_update and len(rows) >= limit:
            logger.warning(f"Rejected preset save for owner {owner}: limit of {limit} reached")
            raise PresetLimitError(owner, f"Preset limit reached ({limit} per owner).")

        if is_update:
            con.execute(
                """
                UPDATE cost_presets
                SET name = ?, character_costs_json = ?, equipment_costs_json = ?, updated_at = ?
                WHERE owner_id = ? AND preset_id = ?
                """,
                (name, character_costs_json, equipment_costs_json, now, owner, preset_id),
            )
        else:
            con.execute(
                """
                INSERT INTO cost_presets (
                  owner_id,
                  preset_id,
                  name,
                  character_costs_json,
                  equipment_costs_json,
                  created_at,
                  updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (owner, preset_id, name, character_costs_json, equipment_costs_json, now, now),
            )

    logger.info(f"{'Updated' if is_update else 'Created'} preset {preset_id} for owner {owner}")
    return {
        "version": PRESET_STORE_VERSION,
        "owner_id": owner,
        "preset_id": preset_id,
        "name": name,
        "created": not is_update,
    }


def list_presets(db_path: str, owner_id: str) -> List[Dict[str, Any]]:
    owner = nonempty_str(owner_id)
    if owner is None:
        return []
    _ensure_schema(db_path)
    with _connect(db_path) as con:
        rows = _owner_rows(con, owner)
    return [dict(row) for row in rows]


def get_preset(db_path: str, owner_id: str, preset_id: str) -> CostProfile | None:
    owner = nonempty_str(owner_id)
    preset = nonempty_str(preset_id)
    if owner is None or preset is None:
        return None
    _ensure_schema(db_path)
    with _connect(db_path) as con:
        row = con.execute(
            """
            SELECT preset_id, name, character_costs_json, equipment_costs_json
            FROM cost_presets
            WHERE owner_id = ? AND preset_id = ?
            """,
            (owner, preset),
        ).fetchone()
    if row is None:
        return None
    return _row_to_profile(row)


def delete_preset(db_path: str, owner_id: str, preset_id: str) -> bool:
    owner = nonempty_str(owner_id)
    preset = nonempty_str(preset_id)
    if owner is None or preset is None:
        return False
    _ensure_schema(db_path)
    with _connect(db_path) as con:
        cur = con.execute(
            "DELETE FROM cost_presets WHERE owner_id = ? AND preset_id = ?",
            (owner, preset),
        )
        deleted = cur.rowcount > 0
    if deleted:
        logger.info(f"Deleted preset {preset} for owner {owner}")
    return deleted

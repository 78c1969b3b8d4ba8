from __future__ import annotations

from typing import Any, Dict, List

from catalog.snapshot import CatalogSnapshot, CharacterEntry, EquipmentEntry


_CHARACTER_ENVELOPE_KEYS = ("data", "characters", "items")
_EQUIPMENT_ENVELOPE_KEYS = ("cones", "lightcones", "light_cones", "equipment", "data", "items")
_IMAGE_KEYS = ("image_ref", "image_url", "imageUrl", "image")
_TRUTHY_TOKENS = {"1", "true", "yes", "y", "limited"}


def _nonempty_str(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, str):
        token = value.strip()
        if token != "":
            return token
    return None


def _coerce_rarity(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, int(value))
    if isinstance(value, float):
        return max(0, int(value))
    if isinstance(value, str):
        token = value.strip()
        try:
            return max(0, int(float(token)))
        except ValueError:
            return 0
    return 0


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_TOKENS
    return False


def _first_present(row: Dict[str, Any], keys: tuple) -> Any:
    for key in keys:
        if key in row and row.get(key) is not None:
            return row.get(key)
    return None


def _unwrap_rows(payload: Any, envelope_keys: tuple) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        rows = []
        for key in envelope_keys:
            if isinstance(payload.get(key), list):
                rows = payload[key]
                break
    else:
        rows = []
    return [row for row in rows if isinstance(row, dict)]


def character_from_payload(row: Any) -> CharacterEntry | None:
    if not isinstance(row, dict):
        return None
    code = _nonempty_str(_first_present(row, ("code", "character_code", "id")))
    if code is None:
        return None
    name = _nonempty_str(row.get("name")) or ""
    return CharacterEntry(
        code=code,
        name=name,
        subname=_nonempty_str(row.get("subname")),
        rarity=_coerce_rarity(row.get("rarity")),
        image_ref=_nonempty_str(_first_present(row, _IMAGE_KEYS)) or "",
        limited=_coerce_flag(row.get("limited")),
    )


def equipment_from_payload(row: Any) -> EquipmentEntry | None:
    if not isinstance(row, dict):
        return None
    equipment_id = _nonempty_str(_first_present(row, ("id", "lc_id", "cone_id", "code")))
    if equipment_id is None:
        return None
    name = _nonempty_str(row.get("name")) or ""
    return EquipmentEntry(
        id=equipment_id,
        name=name,
        subname=_nonempty_str(row.get("subname")),
        rarity=_coerce_rarity(row.get("rarity")),
        limited=_coerce_flag(row.get("limited")),
        image_ref=_nonempty_str(_first_present(row, _IMAGE_KEYS)) or "",
    )


def catalog_from_payloads(snapshot_id: str, characters_payload: Any, equipment_payload: Any) -> CatalogSnapshot:
    """Normalize catalog service payloads into a strict CatalogSnapshot.

    The service responds with slightly different shapes per endpoint
    (``{"data": [...]}`` for characters, ``{"cones": [...]}`` for light cones,
    ``image_url`` vs ``imageUrl``, numeric ids, string rarities). Everything
    loose is absorbed here. Rows without an id are dropped; the first row wins
    when an id repeats.
    """

    characters: Dict[str, CharacterEntry] = {}
    for row in _unwrap_rows(characters_payload, _CHARACTER_ENVELOPE_KEYS):
        entry = character_from_payload(row)
        if entry is None or entry.code in characters:
            continue
        characters[entry.code] = entry

    equipment: Dict[str, EquipmentEntry] = {}
    for row in _unwrap_rows(equipment_payload, _EQUIPMENT_ENVELOPE_KEYS):
        entry = equipment_from_payload(row)
        if entry is None or entry.id in equipment:
            continue
        equipment[entry.id] = entry

    return CatalogSnapshot(
        snapshot_id=_nonempty_str(snapshot_id) or "",
        characters=tuple(characters.values()),
        equipment=tuple(equipment.values()),
    )


def catalog_to_payload(catalog: CatalogSnapshot) -> Dict[str, Any]:
    return {
        "snapshot_id": catalog.snapshot_id,
        "characters": [
            {
                "code": entry.code,
                "name": entry.name,
                "subname": entry.subname,
                "rarity": int(entry.rarity),
                "image_ref": entry.image_ref,
                "limited": bool(entry.limited),
            }
            for entry in catalog.characters_by_display_name()
        ],
        "equipment": [
            {
                "id": entry.id,
                "name": entry.name,
                "subname": entry.subname,
                "rarity": int(entry.rarity),
                "limited": bool(entry.limited),
                "image_ref": entry.image_ref,
            }
            for entry in catalog.equipment_by_display_name()
        ],
    }

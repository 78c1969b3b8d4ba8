from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List

from catalog.snapshot import CatalogSnapshot, CharacterEntry, EquipmentEntry


IDENTITY_RESOLVE_VERSION = "identity_resolve_v1"

_SEPARATOR_CHARS_RE = re.compile(r"[\s\u00a0\u2000-\u200b\u202f]+")
_NON_KEY_CHARS_RE = re.compile(r"[^a-z0-9]")
_EMPTY_SUBNAME_TOKENS = {"", "null", "-", "\u2014"}


def normalize_key(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    token = unicodedata.normalize("NFD", value.lower())
    token = "".join(ch for ch in token if not unicodedata.combining(ch))
    token = _SEPARATOR_CHARS_RE.sub("", token)
    return _NON_KEY_CHARS_RE.sub("", token)


def _clean_token(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lstrip("\ufeff").strip()


def normalize_subname_token(value: Any) -> str:
    token = _clean_token(value).lower()
    if token in _EMPTY_SUBNAME_TOKENS:
        return ""
    return token


def _pair_key(name: str, subname: str) -> str:
    return f"{name}|{subname}"


def _unique_owner(owners_by_key: Dict[str, List[str]]) -> Dict[str, str]:
    return {key: owners[0] for key, owners in owners_by_key.items() if len(set(owners)) == 1}


@dataclass(frozen=True)
class IdentityIndex:
    snapshot_id: str
    character_code_to_code: Dict[str, str] = field(default_factory=dict)
    character_name_to_code: Dict[str, str] = field(default_factory=dict)
    character_name_key_to_code: Dict[str, str] = field(default_factory=dict)
    equipment_pair_to_id: Dict[str, str] = field(default_factory=dict)
    equipment_pair_key_to_id: Dict[str, str] = field(default_factory=dict)
    equipment_id_to_id: Dict[str, str] = field(default_factory=dict)
    equipment_unique_name_to_id: Dict[str, str] = field(default_factory=dict)


def build_identity_index(catalog: CatalogSnapshot) -> IdentityIndex:
    """Build every label lookup for one catalog snapshot.

    Name lookups only hold names owned by exactly one entry; a character
    name shared by two codes, or an equipment bare name shared by two ids,
    stays unresolved unless a code, id or subname disambiguates it.
    """

    character_code_to_code: Dict[str, str] = {}
    codes_by_name: Dict[str, List[str]] = {}
    codes_by_name_key: Dict[str, List[str]] = {}

    for entry in catalog.characters:
        name = _clean_token(entry.name)
        if name != "":
            codes_by_name.setdefault(name.lower(), []).append(entry.code)
            name_key = normalize_key(name)
            if name_key != "":
                codes_by_name_key.setdefault(name_key, []).append(entry.code)
        character_code_to_code[entry.code.lower()] = entry.code

    character_name_to_code = _unique_owner(codes_by_name)
    character_name_key_to_code = _unique_owner(codes_by_name_key)

    equipment_pair_to_id: Dict[str, str] = {}
    equipment_pair_key_to_id: Dict[str, str] = {}
    equipment_id_to_id: Dict[str, str] = {}
    ids_by_bare_name: Dict[str, List[str]] = {}

    for entry in catalog.equipment:
        name = _clean_token(entry.name)
        subname = _clean_token(entry.subname)
        equipment_pair_to_id[_pair_key(name.lower(), subname.lower())] = entry.id
        equipment_pair_key_to_id[_pair_key(normalize_key(name), normalize_key(subname))] = entry.id
        if name != "":
            ids_by_bare_name.setdefault(name.lower(), []).append(entry.id)
        equipment_id_to_id[str(entry.id).lower()] = entry.id

    equipment_unique_name_to_id = _unique_owner(ids_by_bare_name)

    return IdentityIndex(
        snapshot_id=catalog.snapshot_id,
        character_code_to_code=character_code_to_code,
        character_name_to_code=character_name_to_code,
        character_name_key_to_code=character_name_key_to_code,
        equipment_pair_to_id=equipment_pair_to_id,
        equipment_pair_key_to_id=equipment_pair_key_to_id,
        equipment_id_to_id=equipment_id_to_id,
        equipment_unique_name_to_id=equipment_unique_name_to_id,
    )


def resolve_character(index: IdentityIndex, code_token: Any = None, name_token: Any = None) -> str | None:
    code_raw = _clean_token(code_token)
    if code_raw != "":
        code = index.character_code_to_code.get(code_raw.lower())
        if code is not None:
            return code

    name_raw = _clean_token(name_token)
    if name_raw == "":
        return None

    name_lower = name_raw.lower()
    code = index.character_name_to_code.get(name_lower)
    if code is None:
        name_key = normalize_key(name_raw)
        if name_key != "":
            code = index.character_name_key_to_code.get(name_key)
    if code is None:
        # Sheets sometimes carry the code in the name column.
        code = index.character_code_to_code.get(name_lower)
    return code


def resolve_equipment(
    index: IdentityIndex,
    name_token: Any = None,
    subname_token: Any = None,
    id_token: Any = None,
) -> str | None:
    name_raw = _clean_token(name_token)
    subname = normalize_subname_token(subname_token)
    id_raw = _clean_token(id_token)

    if name_raw == "":
        if id_raw == "":
            return None
        return index.equipment_id_to_id.get(id_raw.lower())

    name_lower = name_raw.lower()
    equipment_id = index.equipment_pair_to_id.get(_pair_key(name_lower, subname))
    if equipment_id is None:
        equipment_id = index.equipment_pair_key_to_id.get(
            _pair_key(normalize_key(name_raw), normalize_key(subname))
        )
    if equipment_id is None and id_raw != "":
        equipment_id = index.equipment_id_to_id.get(id_raw.lower())
    if equipment_id is None:
        equipment_id = index.equipment_unique_name_to_id.get(name_lower)
    return equipment_id


def is_signature_equipment(character: CharacterEntry | None, equipment: EquipmentEntry | None) -> bool:
    """True when the equipment subname names the character (by name or by the character's own subname)."""
    if character is None or equipment is None:
        return False
    tag = normalize_subname_token(equipment.subname)
    if tag == "":
        return False
    if tag == _clean_token(character.name).lower():
        return True
    own_tag = normalize_subname_token(character.subname)
    return own_tag != "" and tag == own_tag


def resolve_labels_v1(catalog: CatalogSnapshot, labels: Any) -> Dict[str, Any]:
    """Resolve a batch of loosely-typed labels, reporting each outcome.

    ``labels`` is a list of dicts with ``kind`` ("character" or "lightcone")
    and any of ``code``/``id``/``name``/``subname``.
    """

    index = build_identity_index(catalog)
    rows = labels if isinstance(labels, list) else []

    resolved: List[Dict[str, Any]] = []
    unresolved: List[Dict[str, Any]] = []

    for position, row in enumerate(rows):
        if not isinstance(row, dict):
            continue
        kind = _clean_token(row.get("kind")).lower() or "character"
        if kind == "character":
            ref_id = resolve_character(index, code_token=row.get("code"), name_token=row.get("name"))
        else:
            ref_id = resolve_equipment(
                index,
                name_token=row.get("name"),
                subname_token=row.get("subname"),
                id_token=row.get("id"),
            )

        if ref_id is None:
            unresolved.append(
                {
                    "position": int(position),
                    "kind": kind,
                    "label": _clean_token(row.get("name")) or _clean_token(row.get("code")) or _clean_token(row.get("id")),
                    "reason_code": "LABEL_NOT_RESOLVED",
                }
            )
            continue

        resolved.append(
            {
                "position": int(position),
                "kind": kind,
                "ref_id": ref_id,
            }
        )

    return {
        "version": IDENTITY_RESOLVE_VERSION,
        "status": "UNRESOLVED_PRESENT" if len(unresolved) > 0 else "OK",
        "snapshot_id": catalog.snapshot_id,
        "resolved": resolved,
        "unresolved": unresolved,
    }

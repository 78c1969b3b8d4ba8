from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List

from api.engine.constants import (
    FEATURED_KIND_CHARACTER,
    FEATURED_KIND_EQUIPMENT,
    FEATURED_KINDS,
    FEATURED_RULE_GLOBAL_BAN,
    FEATURED_RULE_GLOBAL_PICK,
    FEATURED_RULE_NONE,
    FEATURED_RULES,
    MAX_FEATURED_ENTRIES,
)
from api.engine.utils import is_number, nonempty_str
from catalog.snapshot import CatalogSnapshot


FEATURED_VALIDATE_VERSION = "featured_validate_v1"


@dataclass(frozen=True)
class FeaturedEntry:
    kind: str
    ref_id: str
    rule: str = FEATURED_RULE_NONE
    custom_cost: float | None = None
    name: str = ""

    @property
    def is_complete(self) -> bool:
        return self.rule != FEATURED_RULE_NONE or self.custom_cost is not None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "ref_id": self.ref_id,
            "rule": self.rule,
            "custom_cost": self.custom_cost,
            "name": self.name,
        }


def _ref_token(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return nonempty_str(value)


def featured_entry_from_payload(raw: Any) -> FeaturedEntry:
    """Adapt one loosely shaped featured entry.

    Payloads carry ``code`` for characters and ``id`` for light cones; an
    explicit ``ref_id`` wins over both. Unknown rules collapse to ``none`` and
    a custom cost that is not a number is treated as absent.
    """

    if not isinstance(raw, dict):
        return FeaturedEntry(kind=FEATURED_KIND_CHARACTER, ref_id="")

    id_token = _ref_token(raw.get("id"))
    code_token = _ref_token(raw.get("code"))
    kind_raw = nonempty_str(raw.get("kind"))
    if kind_raw in FEATURED_KINDS:
        kind = kind_raw
    else:
        kind = FEATURED_KIND_EQUIPMENT if id_token is not None else FEATURED_KIND_CHARACTER

    ref_id = _ref_token(raw.get("ref_id"))
    if ref_id is None:
        ref_id = id_token if kind == FEATURED_KIND_EQUIPMENT else code_token

    rule = raw.get("rule")
    if rule not in FEATURED_RULES:
        rule = FEATURED_RULE_NONE

    custom_cost_raw = raw.get("custom_cost", raw.get("customCost"))
    custom_cost = float(custom_cost_raw) if is_number(custom_cost_raw) else None

    return FeaturedEntry(
        kind=kind,
        ref_id=ref_id or "",
        rule=rule,
        custom_cost=custom_cost,
        name=nonempty_str(raw.get("name")) or "",
    )


def normalize_featured_entries(raw: Any) -> List[FeaturedEntry]:
    rows = raw if isinstance(raw, list) else []
    out: List[FeaturedEntry] = []
    for row in rows:
        if isinstance(row, FeaturedEntry):
            out.append(row)
        else:
            out.append(featured_entry_from_payload(row))
    return out


def _violation(index: int, entry: FeaturedEntry, code: str, message: str) -> Dict[str, Any]:
    return {
        "index": int(index),
        "code": code,
        "kind": entry.kind,
        "ref_id": entry.ref_id or None,
        "message": message,
    }


def _entry_known(entry: FeaturedEntry, catalog: CatalogSnapshot) -> bool:
    if entry.kind == FEATURED_KIND_EQUIPMENT:
        return catalog.equipment_item(entry.ref_id) is not None
    return catalog.character(entry.ref_id) is not None


def validate_featured_entries(entries: Any, catalog: CatalogSnapshot | None = None) -> Dict[str, Any]:
    normalized = normalize_featured_entries(entries)

    violations: List[Dict[str, Any]] = []
    seen: Dict[tuple, int] = {}

    for index, entry in enumerate(normalized):
        if entry.ref_id == "":
            violations.append(
                _violation(index, entry, "FEATURED_REF_MISSING", "Featured entry does not reference a character or light cone.")
            )
        elif catalog is not None and not _entry_known(entry, catalog):
            violations.append(
                _violation(index, entry, "FEATURED_UNKNOWN_REF", "Featured entry references an id missing from the catalog.")
            )

        if not entry.is_complete:
            violations.append(
                _violation(index, entry, "FEATURED_INCOMPLETE", "Pick a rule or set a custom cost.")
            )

        if entry.rule == FEATURED_RULE_GLOBAL_PICK and entry.kind == FEATURED_KIND_EQUIPMENT:
            violations.append(
                _violation(
                    index,
                    entry,
                    "FEATURED_GLOBAL_PICK_ON_EQUIPMENT",
                    "Global pick is only allowed for characters.",
                )
            )

        if entry.custom_cost is not None and (not math.isfinite(entry.custom_cost) or entry.custom_cost < 0):
            violations.append(
                _violation(index, entry, "FEATURED_CUSTOM_COST_INVALID", "Custom cost must be a finite number >= 0.")
            )

        if entry.ref_id != "":
            key = (entry.kind, entry.ref_id)
            if key in seen:
                violations.append(
                    _violation(index, entry, "FEATURED_DUPLICATE", f"Duplicates featured entry #{seen[key]}.")
                )
            else:
                seen[key] = index

        if index >= MAX_FEATURED_ENTRIES:
            violations.append(
                _violation(
                    index,
                    entry,
                    "FEATURED_LIMIT_EXCEEDED",
                    f"At most {MAX_FEATURED_ENTRIES} featured entries are allowed.",
                )
            )

    invalid_indices = sorted(set(int(v["index"]) for v in violations))
    return {
        "version": FEATURED_VALIDATE_VERSION,
        "status": "INVALID" if len(violations) > 0 else "OK",
        "entries_total": len(normalized),
        "invalid_indices": invalid_indices,
        "violations": violations,
    }


def featured_rule_sets(entries: Any) -> Dict[str, Any]:
    normalized = normalize_featured_entries(entries)

    banned_characters = set()
    banned_equipment = set()
    picked_characters = set()
    character_cost_overrides: Dict[str, float] = {}
    equipment_cost_overrides: Dict[str, float] = {}

    for entry in normalized:
        if entry.ref_id == "":
            continue
        if entry.rule == FEATURED_RULE_GLOBAL_BAN:
            if entry.kind == FEATURED_KIND_EQUIPMENT:
                banned_equipment.add(entry.ref_id)
            else:
                banned_characters.add(entry.ref_id)
        elif entry.rule == FEATURED_RULE_GLOBAL_PICK and entry.kind == FEATURED_KIND_CHARACTER:
            picked_characters.add(entry.ref_id)

        if entry.custom_cost is not None:
            if entry.kind == FEATURED_KIND_EQUIPMENT:
                equipment_cost_overrides[entry.ref_id] = entry.custom_cost
            else:
                character_cost_overrides[entry.ref_id] = entry.custom_cost

    return {
        "global_bans": {
            FEATURED_KIND_CHARACTER: sorted(banned_characters),
            FEATURED_KIND_EQUIPMENT: sorted(banned_equipment),
        },
        "global_picks": sorted(picked_characters),
        "character_cost_overrides": {key: character_cost_overrides[key] for key in sorted(character_cost_overrides)},
        "equipment_cost_overrides": {key: equipment_cost_overrides[key] for key in sorted(equipment_cost_overrides)},
    }

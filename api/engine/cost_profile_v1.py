from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from api.engine.constants import (
    CHARACTER_LEVELS,
    DEFAULT_FIVE_STAR_CHARACTER_BASE,
    DEFAULT_FOUR_STAR_CHARACTER_COST,
    DEFAULT_IMPORT_NAME,
    DEFAULT_LIMITED_CHARACTER_BUMP,
    DEFAULT_LIMITED_CHARACTER_BUMP_LEVELS,
    DEFAULT_STANDARD_CHARACTER_MAX_LEVEL_COST,
    DEFAULT_STANDARD_EQUIPMENT_COST,
    DEFAULT_STANDARD_EQUIPMENT_COST_FROM_LEVEL,
    EQUIPMENT_LEVELS,
    LIMITED_EQUIPMENT_SCHEDULE,
    NEW_PROFILE_ID,
    PROFILE_NAME_MAX_LEN,
)
from api.engine.utils import finite_nonnegative, is_number, nonempty_str
from catalog.snapshot import CatalogSnapshot, CharacterEntry, EquipmentEntry


COST_PROFILE_VERSION = "cost_profile_v1"

DEFAULT_PROFILE_ID = "default"
DEFAULT_PROFILE_NAME = "Default"

_CHARACTER_COSTS_KEYS = ("character_costs", "characterCosts", "charMs")
_EQUIPMENT_COSTS_KEYS = ("equipment_costs", "equipmentCosts", "lcPhase")


@dataclass(frozen=True)
class CostProfile:
    id: str
    name: str
    character_costs: Dict[str, List[float]] = field(default_factory=dict)
    equipment_costs: Dict[str, List[float]] = field(default_factory=dict)

    def character_matrix(self, code: str) -> List[float] | None:
        return self.character_costs.get(code)

    def equipment_matrix(self, equipment_id: str) -> List[float] | None:
        return self.equipment_costs.get(equipment_id)


def zero_matrix(length: int) -> List[float]:
    return [0.0] * int(length)


def coerce_cost_matrix(values: Any, length: int) -> List[float]:
    """Pad or truncate to ``length``; anything not a finite non-negative number becomes 0.

    Values are not snapped to quarters here; only the table parser quantizes.
    """

    raw = values if isinstance(values, (list, tuple)) else []
    out = [finite_nonnegative(value) for value in raw[:length]]
    while len(out) < length:
        out.append(0.0)
    return out


def build_zero_profile(
    catalog: CatalogSnapshot,
    profile_id: str = NEW_PROFILE_ID,
    name: str = DEFAULT_IMPORT_NAME,
) -> CostProfile:
    return CostProfile(
        id=profile_id,
        name=name,
        character_costs={code: zero_matrix(CHARACTER_LEVELS) for code in catalog.character_codes()},
        equipment_costs={equipment_id: zero_matrix(EQUIPMENT_LEVELS) for equipment_id in catalog.equipment_ids()},
    )


def reconcile_cost_profile(profile: CostProfile, catalog: CatalogSnapshot) -> CostProfile:
    """Return a copy covering exactly the catalog's ids.

    Missing ids are zero-filled, ids the catalog no longer knows are dropped,
    and every matrix is coerced to its fixed length.
    """

    character_costs = {
        code: coerce_cost_matrix(profile.character_costs.get(code), CHARACTER_LEVELS)
        for code in catalog.character_codes()
    }
    equipment_costs = {
        equipment_id: coerce_cost_matrix(profile.equipment_costs.get(equipment_id), EQUIPMENT_LEVELS)
        for equipment_id in catalog.equipment_ids()
    }
    return CostProfile(
        id=profile.id,
        name=profile.name,
        character_costs=character_costs,
        equipment_costs=equipment_costs,
    )


def default_character_matrix(entry: CharacterEntry) -> List[float]:
    if entry.rarity <= 4:
        return [DEFAULT_FOUR_STAR_CHARACTER_COST] * CHARACTER_LEVELS

    matrix: List[float] = []
    for level in range(CHARACTER_LEVELS):
        if entry.limited:
            bumps = len([bump for bump in DEFAULT_LIMITED_CHARACTER_BUMP_LEVELS if level >= bump])
            matrix.append(DEFAULT_FIVE_STAR_CHARACTER_BASE + DEFAULT_LIMITED_CHARACTER_BUMP * bumps)
        elif level >= CHARACTER_LEVELS - 1:
            matrix.append(DEFAULT_STANDARD_CHARACTER_MAX_LEVEL_COST)
        else:
            matrix.append(DEFAULT_FIVE_STAR_CHARACTER_BASE)
    return matrix


def default_equipment_matrix(entry: EquipmentEntry) -> List[float]:
    if entry.rarity <= 4:
        return zero_matrix(EQUIPMENT_LEVELS)
    if entry.limited:
        return list(LIMITED_EQUIPMENT_SCHEDULE)
    return [
        DEFAULT_STANDARD_EQUIPMENT_COST if level >= DEFAULT_STANDARD_EQUIPMENT_COST_FROM_LEVEL else 0.0
        for level in range(1, EQUIPMENT_LEVELS + 1)
    ]


def build_default_cost_profile(catalog: CatalogSnapshot) -> CostProfile:
    """Fallback tables used when no preset is selected."""
    return CostProfile(
        id=DEFAULT_PROFILE_ID,
        name=DEFAULT_PROFILE_NAME,
        character_costs={entry.code: default_character_matrix(entry) for entry in catalog.characters},
        equipment_costs={entry.id: default_equipment_matrix(entry) for entry in catalog.equipment},
    )


def _first_present(payload: Mapping[str, Any], keys: tuple) -> Any:
    for key in keys:
        if key in payload:
            return payload.get(key)
    return None


def _matrix_map(raw: Any, length: int) -> Dict[str, List[float]]:
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, List[float]] = {}
    for key in sorted(raw.keys(), key=lambda k: str(k)):
        ref_id = nonempty_str(str(key)) if key is not None else None
        if ref_id is None:
            continue
        out[ref_id] = coerce_cost_matrix(raw.get(key), length)
    return out


def cost_profile_from_payload(payload: Any) -> CostProfile:
    data = payload if isinstance(payload, dict) else {}
    profile_id = nonempty_str(data.get("id")) or NEW_PROFILE_ID
    name = nonempty_str(data.get("name")) or DEFAULT_IMPORT_NAME
    return CostProfile(
        id=profile_id,
        name=name[:PROFILE_NAME_MAX_LEN],
        character_costs=_matrix_map(_first_present(data, _CHARACTER_COSTS_KEYS), CHARACTER_LEVELS),
        equipment_costs=_matrix_map(_first_present(data, _EQUIPMENT_COSTS_KEYS), EQUIPMENT_LEVELS),
    )


def cost_profile_to_payload(profile: CostProfile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "name": profile.name,
        "character_costs": {code: list(profile.character_costs[code]) for code in sorted(profile.character_costs)},
        "equipment_costs": {
            equipment_id: list(profile.equipment_costs[equipment_id])
            for equipment_id in sorted(profile.equipment_costs)
        },
    }


def _violation(code: str, kind: str | None, ref_id: str | None, message: str, level_index: int | None = None) -> Dict[str, Any]:
    return {
        "code": code,
        "kind": kind,
        "ref_id": ref_id,
        "level_index": level_index,
        "message": message,
    }


def _matrix_violations(kind: str, raw: Any, length: int) -> List[Dict[str, Any]]:
    violations: List[Dict[str, Any]] = []
    if not isinstance(raw, dict):
        violations.append(
            _violation("COST_PROFILE_MATRICES_MISSING", kind, None, f"{kind} costs must be an object keyed by id.")
        )
        return violations

    for ref_id in sorted(raw.keys(), key=lambda k: str(k)):
        values = raw.get(ref_id)
        if not isinstance(values, (list, tuple)) or len(values) != length:
            violations.append(
                _violation(
                    "COST_MATRIX_LENGTH_INVALID",
                    kind,
                    str(ref_id),
                    f"{kind} cost matrix must hold exactly {length} values.",
                )
            )
            continue
        for level_index, value in enumerate(values):
            if not is_number(value) or not math.isfinite(float(value)) or float(value) < 0:
                violations.append(
                    _violation(
                        "COST_VALUE_INVALID",
                        kind,
                        str(ref_id),
                        "Cost values must be finite numbers >= 0.",
                        level_index=level_index,
                    )
                )
    return violations


def _coverage_violations(kind: str, raw: Any, catalog_ids: List[str]) -> List[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return []
    present = set(str(key) for key in raw.keys())
    known = set(catalog_ids)
    violations: List[Dict[str, Any]] = []
    for ref_id in sorted(known - present):
        violations.append(
            _violation("COST_PROFILE_ID_MISSING", kind, ref_id, "Catalog entry has no cost matrix.")
        )
    for ref_id in sorted(present - known):
        violations.append(
            _violation("COST_PROFILE_ID_STALE", kind, ref_id, "Cost matrix references an id the catalog no longer has.")
        )
    return violations


def validate_cost_profile(profile: Any, catalog: CatalogSnapshot | None = None) -> Dict[str, Any]:
    """Check cost values and catalog coverage of a profile payload.

    Accepts either a ``CostProfile`` or its loose dict form. Coverage checks
    only run when a catalog is supplied.
    """

    if isinstance(profile, CostProfile):
        data: Dict[str, Any] = {
            "id": profile.id,
            "name": profile.name,
            "character_costs": profile.character_costs,
            "equipment_costs": profile.equipment_costs,
        }
    elif isinstance(profile, dict):
        data = profile
    else:
        data = {}

    violations: List[Dict[str, Any]] = []

    name = nonempty_str(data.get("name"))
    if name is None:
        violations.append(_violation("COST_PROFILE_NAME_MISSING", None, None, "Cost profile needs a name."))
    elif len(name) > PROFILE_NAME_MAX_LEN:
        violations.append(
            _violation(
                "COST_PROFILE_NAME_TOO_LONG",
                None,
                None,
                f"Cost profile name must be at most {PROFILE_NAME_MAX_LEN} characters.",
            )
        )

    character_raw = _first_present(data, _CHARACTER_COSTS_KEYS)
    equipment_raw = _first_present(data, _EQUIPMENT_COSTS_KEYS)

    violations.extend(_matrix_violations("character", character_raw, CHARACTER_LEVELS))
    violations.extend(_matrix_violations("lightcone", equipment_raw, EQUIPMENT_LEVELS))

    if catalog is not None:
        violations.extend(_coverage_violations("character", character_raw, catalog.character_codes()))
        violations.extend(_coverage_violations("lightcone", equipment_raw, catalog.equipment_ids()))

    return {
        "version": COST_PROFILE_VERSION,
        "status": "INVALID" if len(violations) > 0 else "OK",
        "violations": violations,
    }

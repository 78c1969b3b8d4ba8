from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Mapping, Sequence

from api.engine.constants import (
    CHARACTER_LEVEL_MAX,
    CHARACTER_LEVEL_MIN,
    DEFAULT_CYCLE_BREAKPOINT,
    EQUIPMENT_LEVEL_MAX,
    EQUIPMENT_LEVEL_MIN,
    FEATURED_KIND_EQUIPMENT,
    LIMITED_EQUIPMENT_SCHEDULE,
    RULESET_A_ID,
    RULESET_B_ID,
)
from api.engine.cost_profile_v1 import CostProfile, build_default_cost_profile, reconcile_cost_profile
from api.engine.featured_validate_v1 import normalize_featured_entries
from api.engine.identity_resolve_v1 import is_signature_equipment
from api.engine.utils import clamp_int, is_number, nonempty_str
from catalog.snapshot import CatalogSnapshot


COST_AGGREGATE_VERSION = "cost_aggregate_v1"

EQUIPMENT_RULE_MATRIX = "matrix"
EQUIPMENT_RULE_LIMITED_SCHEDULE = "limited_schedule"


@dataclass(frozen=True)
class RulesetConfig:
    ruleset_id: str
    character_costs: Mapping[str, Sequence[float]] = field(default_factory=dict)
    equipment_rule: str = EQUIPMENT_RULE_MATRIX
    equipment_costs: Mapping[str, Sequence[float]] = field(default_factory=dict)
    limited_ids: FrozenSet[str] = frozenset()
    cost_profile_id: str | None = None


@dataclass(frozen=True)
class TeamSlot:
    character_id: str
    level: int = 0
    equipment_id: str | None = None
    equipment_level: int = 1


def team_slot_from_payload(raw: Any) -> TeamSlot | None:
    if isinstance(raw, TeamSlot):
        return raw
    if not isinstance(raw, dict):
        return None

    character_id = nonempty_str(raw.get("character_id", raw.get("characterId")))
    if character_id is None:
        return None
    level = raw.get("level", CHARACTER_LEVEL_MIN)
    equipment_level = raw.get("equipment_level", raw.get("equipmentLevel", EQUIPMENT_LEVEL_MIN))
    return TeamSlot(
        character_id=character_id,
        level=level,
        equipment_id=nonempty_str(raw.get("equipment_id", raw.get("equipmentId"))),
        equipment_level=equipment_level,
    )


def team_slots_from_payload(raw: Any) -> List[TeamSlot | None]:
    rows = raw if isinstance(raw, list) else []
    return [team_slot_from_payload(row) for row in rows]


def _level_index(level: Any) -> int | None:
    if not is_number(level):
        return None
    number = float(level)
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def _matrix_value(matrix: Any, position: int) -> float:
    if not isinstance(matrix, (list, tuple)) or position < 0 or position >= len(matrix):
        return 0.0
    value = matrix[position]
    if not is_number(value) or not math.isfinite(float(value)):
        return 0.0
    return float(value)


def character_cost(character_id: Any, level: Any, ruleset: RulesetConfig) -> float:
    if not isinstance(character_id, str) or character_id == "":
        return 0.0
    position = _level_index(level)
    if position is None or position < CHARACTER_LEVEL_MIN or position > CHARACTER_LEVEL_MAX:
        return 0.0
    return _matrix_value(ruleset.character_costs.get(character_id), position)


def equipment_cost(equipment_id: Any, level: Any, ruleset: RulesetConfig) -> float:
    if not isinstance(equipment_id, str) or equipment_id == "":
        return 0.0

    if ruleset.equipment_rule == EQUIPMENT_RULE_LIMITED_SCHEDULE:
        if equipment_id not in ruleset.limited_ids:
            return 0.0
        position = _level_index(level)
        step = clamp_int(position if position is not None else EQUIPMENT_LEVEL_MIN, EQUIPMENT_LEVEL_MIN, EQUIPMENT_LEVEL_MAX)
        return float(LIMITED_EQUIPMENT_SCHEDULE[step - 1])

    position = _level_index(level)
    if position is None or position < EQUIPMENT_LEVEL_MIN or position > EQUIPMENT_LEVEL_MAX:
        return 0.0
    return _matrix_value(ruleset.equipment_costs.get(equipment_id), position - 1)


def per_slot_cost(slot: TeamSlot | None, ruleset: RulesetConfig) -> float:
    if slot is None:
        return 0.0
    total = character_cost(slot.character_id, slot.level, ruleset)
    if slot.equipment_id is not None:
        total += equipment_cost(slot.equipment_id, slot.equipment_level, ruleset)
    return total


def team_cost(slots: Sequence[TeamSlot | None], ruleset: RulesetConfig) -> float:
    return sum((per_slot_cost(slot, ruleset) for slot in slots or []), 0.0)


def team_cost_breakdown(
    slots: Sequence[TeamSlot | None],
    ruleset: RulesetConfig,
    catalog: CatalogSnapshot | None = None,
) -> Dict[str, Any]:
    """Per-slot costs plus the team total.

    With a catalog, each row also flags whether the slot's light cone is the
    character's signature cone.
    """

    rows: List[Dict[str, Any]] = []
    total = 0.0
    for position, slot in enumerate(slots or []):
        if slot is None:
            rows.append(
                {
                    "position": int(position),
                    "character_id": None,
                    "equipment_id": None,
                    "character_cost": 0.0,
                    "equipment_cost": 0.0,
                    "total": 0.0,
                    "signature_equipment": False,
                }
            )
            continue

        char_part = character_cost(slot.character_id, slot.level, ruleset)
        equip_part = 0.0
        if slot.equipment_id is not None:
            equip_part = equipment_cost(slot.equipment_id, slot.equipment_level, ruleset)
        signature = False
        if catalog is not None and slot.equipment_id is not None:
            signature = is_signature_equipment(
                catalog.character(slot.character_id),
                catalog.equipment_item(slot.equipment_id),
            )
        rows.append(
            {
                "position": int(position),
                "character_id": slot.character_id,
                "equipment_id": slot.equipment_id,
                "character_cost": char_part,
                "equipment_cost": equip_part,
                "total": char_part + equip_part,
                "signature_equipment": signature,
            }
        )
        total += char_part + equip_part

    return {
        "version": COST_AGGREGATE_VERSION,
        "ruleset_id": ruleset.ruleset_id,
        "cost_profile_id": ruleset.cost_profile_id,
        "slots": rows,
        "total": total,
    }


def compare_rulesets(
    slots: Sequence[TeamSlot | None],
    rulesets: Sequence[RulesetConfig],
    catalog: CatalogSnapshot | None = None,
) -> Dict[str, Any]:
    breakdowns = [team_cost_breakdown(slots, ruleset, catalog=catalog) for ruleset in rulesets]
    return {
        "version": COST_AGGREGATE_VERSION,
        "totals": {row["ruleset_id"]: row["total"] for row in breakdowns},
        "breakdowns": breakdowns,
    }


def cost_advantage(
    team_x: Sequence[TeamSlot | None],
    team_y: Sequence[TeamSlot | None],
    ruleset: RulesetConfig,
) -> float:
    return team_cost(team_x, ruleset) - team_cost(team_y, ruleset)


def coerce_cycle_breakpoint(value: Any) -> int:
    if not is_number(value) or not math.isfinite(float(value)):
        return DEFAULT_CYCLE_BREAKPOINT
    return max(1, int(math.floor(float(value))))


def cycle_penalty(breakpoint: Any = DEFAULT_CYCLE_BREAKPOINT, advantage: Any = 0.0) -> float:
    """Convert a cost advantage into cycles: ``advantage / breakpoint``, unrounded."""
    if not is_number(advantage) or not math.isfinite(float(advantage)):
        return 0.0
    return float(advantage) / coerce_cycle_breakpoint(breakpoint)


def _ruleset_sources(catalog: CatalogSnapshot, profile: CostProfile | None) -> CostProfile:
    if profile is None:
        return build_default_cost_profile(catalog)
    return reconcile_cost_profile(profile, catalog)


def _limited_ids(catalog: CatalogSnapshot) -> FrozenSet[str]:
    return frozenset(entry.id for entry in catalog.equipment if entry.limited)


def build_ruleset_a(catalog: CatalogSnapshot, profile: CostProfile | None = None) -> RulesetConfig:
    source = _ruleset_sources(catalog, profile)
    return RulesetConfig(
        ruleset_id=RULESET_A_ID,
        character_costs=source.character_costs,
        equipment_rule=EQUIPMENT_RULE_MATRIX,
        equipment_costs=source.equipment_costs,
        limited_ids=_limited_ids(catalog),
        cost_profile_id=profile.id if profile is not None else None,
    )


def build_ruleset_b(catalog: CatalogSnapshot, profile: CostProfile | None = None) -> RulesetConfig:
    source = _ruleset_sources(catalog, profile)
    return RulesetConfig(
        ruleset_id=RULESET_B_ID,
        character_costs=source.character_costs,
        equipment_rule=EQUIPMENT_RULE_LIMITED_SCHEDULE,
        equipment_costs={},
        limited_ids=_limited_ids(catalog),
        cost_profile_id=profile.id if profile is not None else None,
    )


def _rebased(matrix: Sequence[float], base_cost: float) -> List[float]:
    base = _matrix_value(matrix, 0)
    return [base_cost + (_matrix_value(matrix, position) - base) for position in range(len(matrix))]


def apply_featured_overrides(ruleset: RulesetConfig, featured: Any) -> RulesetConfig:
    """Return a ruleset with featured custom costs applied.

    A custom cost replaces the entity's entry-level price (level 0 for
    characters, level 1 for light cones) and each higher level keeps its
    original delta. Light cone overrides only touch the fallback table: a
    ruleset priced from a cost profile, or from the limited schedule, keeps
    its equipment costs.
    """

    character_costs = dict(ruleset.character_costs)
    equipment_costs = dict(ruleset.equipment_costs)

    for entry in normalize_featured_entries(featured):
        if entry.custom_cost is None or entry.ref_id == "":
            continue
        if not math.isfinite(entry.custom_cost) or entry.custom_cost < 0:
            continue

        if entry.kind == FEATURED_KIND_EQUIPMENT:
            if ruleset.equipment_rule != EQUIPMENT_RULE_MATRIX or ruleset.cost_profile_id is not None:
                continue
            matrix = equipment_costs.get(entry.ref_id)
            if matrix is None:
                continue
            equipment_costs[entry.ref_id] = _rebased(matrix, entry.custom_cost)
            continue

        matrix = character_costs.get(entry.ref_id)
        if matrix is None:
            continue
        character_costs[entry.ref_id] = _rebased(matrix, entry.custom_cost)

    return replace(ruleset, character_costs=character_costs, equipment_costs=equipment_costs)

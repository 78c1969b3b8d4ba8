from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from api.engine.constants import (
    CHARACTER_LEVEL_LABELS,
    CHARACTERS_BANNER,
    COST_TABLE_FORMAT_VERSION,
    DEFAULT_IMPORT_NAME,
    DEFAULT_TEMPLATE_NAME,
    EQUIPMENT_BANNER,
    EQUIPMENT_LEVEL_LABELS,
    CHARACTER_LEVELS,
    EQUIPMENT_LEVELS,
    METADATA_NAME_LABEL,
    METADATA_VERSION_LABEL,
    NEW_PROFILE_ID,
    PROFILE_NAME_MAX_LEN,
    UNRESOLVED_PREVIEW_LIMIT,
)
from api.engine.cost_profile_v1 import (
    CostProfile,
    build_zero_profile,
    coerce_cost_matrix,
    reconcile_cost_profile,
)
from api.engine.identity_resolve_v1 import (
    IdentityIndex,
    build_identity_index,
    normalize_subname_token,
    resolve_character,
    resolve_equipment,
)
from api.engine.quarter_parse_v1 import parse_quarter
from api.engine.table_rows_v1 import TableFormatError, format_table_rows, split_table_rows
from catalog.snapshot import CatalogSnapshot

logger = logging.getLogger(__name__)


COST_TABLE_CODEC_VERSION = "cost_table_codec_v1"

SECTION_NONE = "NO_SECTION"
SECTION_CHARACTERS = "CHARACTERS"
SECTION_LIGHT_CONES = "LIGHT_CONES"

HEADER_KNOWN = "HEADER_KNOWN"
HEADER_UNKNOWN = "HEADER_UNKNOWN"

ROW_BLANK = "blank"
ROW_HEADER = "header"
ROW_METADATA = "metadata"
ROW_BANNER = "banner"
ROW_DATA = "data"
ROW_IGNORED = "ignored"

_CHARACTERS_BANNER_RE = re.compile(r"^characters$", re.IGNORECASE)
_LIGHT_CONES_BANNER_RE = re.compile(r"^light\s?cones?$", re.IGNORECASE)
_METADATA_NAME_RE = re.compile(r"^name$", re.IGNORECASE)
_METADATA_VERSION_RE = re.compile(r"^version$", re.IGNORECASE)

_LINE_BREAK_CHARS_RE = re.compile(r"[\t\r\n]+")

_CHARACTER_LEVEL_KEYS = tuple(label.lower() for label in CHARACTER_LEVEL_LABELS)
_EQUIPMENT_LEVEL_KEYS = tuple(label.lower() for label in EQUIPMENT_LEVEL_LABELS)


class CostTableImportError(RuntimeError):
    def __init__(self, code: str, detail: str):
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}")

    def to_unknown(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.detail,
        }


@dataclass(frozen=True)
class HeaderMapping:
    """Column positions for one section; -1 means the column is absent."""

    name: int
    code: int
    equipment_id: int
    subname: int
    levels: tuple


@dataclass
class ImportState:
    section: str = SECTION_NONE
    headers: Dict[str, HeaderMapping] = field(default_factory=dict)
    profile_name: str | None = None

    @property
    def header_state(self) -> str:
        return HEADER_KNOWN if self.section in self.headers else HEADER_UNKNOWN

    @property
    def header(self) -> HeaderMapping | None:
        return self.headers.get(self.section)

    def enter_section(self, section: str) -> None:
        # Re-entering a section reuses the last header seen for it.
        self.section = section

    def adopt_header(self, section: str, mapping: HeaderMapping) -> None:
        self.section = section
        self.headers[section] = mapping


def single_line_name(value: str) -> str:
    # Tabs or line breaks in the NAME row would change the sniffed delimiter.
    return _LINE_BREAK_CHARS_RE.sub(" ", value).strip()


def _index_of(cells: Sequence[str], label: str) -> int:
    for position, cell in enumerate(cells):
        if cell == label:
            return position
    return -1


def _header_mapping(lowered: Sequence[str], level_keys: tuple) -> HeaderMapping:
    return HeaderMapping(
        name=_index_of(lowered, "name"),
        code=_index_of(lowered, "code"),
        equipment_id=_index_of(lowered, "id"),
        subname=_index_of(lowered, "subname"),
        levels=tuple(_index_of(lowered, key) for key in level_keys),
    )


def detect_header(cells: Sequence[str]) -> tuple | None:
    """Return ``(section, mapping)`` when ``cells`` is a header row, else None.

    Recognition is by label presence only; column order is free.
    """

    lowered = [cell.lower() for cell in cells]
    present = set(lowered)

    if all(key in present for key in _CHARACTER_LEVEL_KEYS) and ("name" in present or "code" in present):
        return SECTION_CHARACTERS, _header_mapping(lowered, _CHARACTER_LEVEL_KEYS)
    if all(key in present for key in _EQUIPMENT_LEVEL_KEYS) and ("name" in present or "id" in present):
        return SECTION_LIGHT_CONES, _header_mapping(lowered, _EQUIPMENT_LEVEL_KEYS)
    return None


def classify_row(cells: Sequence[str]) -> str:
    if len(cells) == 0 or all(cell == "" for cell in cells):
        return ROW_BLANK
    if detect_header(cells) is not None:
        return ROW_HEADER
    first = cells[0]
    if _METADATA_NAME_RE.match(first) or _METADATA_VERSION_RE.match(first):
        return ROW_METADATA
    if _CHARACTERS_BANNER_RE.match(first) or _LIGHT_CONES_BANNER_RE.match(first):
        return ROW_BANNER
    return ROW_DATA


def _cell(cells: Sequence[str], position: int) -> str:
    if position < 0 or position >= len(cells):
        return ""
    return cells[position]


def _level_values(cells: Sequence[str], mapping: HeaderMapping) -> List[float]:
    return [parse_quarter(_cell(cells, position)) for position in mapping.levels]


def _character_label(cells: Sequence[str], mapping: HeaderMapping) -> str:
    return _cell(cells, mapping.name) or _cell(cells, mapping.code)


def _equipment_label(cells: Sequence[str], mapping: HeaderMapping) -> str:
    name = _cell(cells, mapping.name)
    subname = normalize_subname_token(_cell(cells, mapping.subname))
    if name != "" and subname != "":
        return f"{name} ({_cell(cells, mapping.subname)})"
    return name or _cell(cells, mapping.equipment_id)


def _resolve_data_row(
    index: IdentityIndex,
    section: str,
    cells: Sequence[str],
    mapping: HeaderMapping,
) -> tuple:
    if section == SECTION_CHARACTERS:
        ref_id = resolve_character(
            index,
            code_token=_cell(cells, mapping.code),
            name_token=_cell(cells, mapping.name),
        )
        return ref_id, _character_label(cells, mapping)

    ref_id = resolve_equipment(
        index,
        name_token=_cell(cells, mapping.name),
        subname_token=_cell(cells, mapping.subname),
        id_token=_cell(cells, mapping.equipment_id),
    )
    return ref_id, _equipment_label(cells, mapping)


def _preview(entries: List[Dict[str, Any]]) -> List[str]:
    return [f"{entry['label']} @row {entry['row']}" for entry in entries[:UNRESOLVED_PREVIEW_LIMIT]]


def _build_notes(
    characters_updated: int,
    equipment_updated: int,
    unresolved_characters: List[Dict[str, Any]],
    unresolved_equipment: List[Dict[str, Any]],
) -> List[str]:
    notes: List[str] = []
    if characters_updated > 0 or equipment_updated > 0:
        notes.append(f"Updated {characters_updated} characters, {equipment_updated} light cones")
    else:
        notes.append("No cost rows recognized")

    if unresolved_characters:
        note = f"{len(unresolved_characters)} character name(s) not recognized"
        if len(unresolved_characters) <= UNRESOLVED_PREVIEW_LIMIT:
            note += ": " + ", ".join(_preview(unresolved_characters))
        notes.append(note)
    if unresolved_equipment:
        note = f"{len(unresolved_equipment)} light cone name(s) not recognized"
        if len(unresolved_equipment) <= UNRESOLVED_PREVIEW_LIMIT:
            note += ": " + ", ".join(_preview(unresolved_equipment))
        notes.append(note)
    return notes


def _format_cost(value: float) -> str:
    return f"{value:g}"


def cost_changes(catalog: CatalogSnapshot, before: CostProfile, after: CostProfile) -> List[str]:
    """List every changed cell as ``"<name> <level label> old \u2192 new"``.

    Both profiles are reconciled first, so ids missing on either side compare
    against zero and stale ids are ignored.
    """

    old = reconcile_cost_profile(before, catalog)
    new = reconcile_cost_profile(after, catalog)
    out: List[str] = []
    for entry in catalog.characters_by_display_name():
        for label, was, now in zip(CHARACTER_LEVEL_LABELS, old.character_costs[entry.code], new.character_costs[entry.code]):
            if was != now:
                out.append(f"{entry.display_name} {label} {_format_cost(was)} \u2192 {_format_cost(now)}")
    for entry in catalog.equipment_by_display_name():
        name = f"{entry.display_name} ({entry.subname})" if entry.subname else entry.display_name
        for label, was, now in zip(EQUIPMENT_LEVEL_LABELS, old.equipment_costs[entry.id], new.equipment_costs[entry.id]):
            if was != now:
                out.append(f"{name} {label} {_format_cost(was)} \u2192 {_format_cost(now)}")
    return out


def import_cost_table(
    text: Any,
    catalog: CatalogSnapshot,
    base_profile: CostProfile | None = None,
) -> Dict[str, Any]:
    """Parse a cost table into a profile covering the whole current catalog.

    Every catalog id starts zero-filled; each resolved data row overwrites
    that entity's whole matrix. Unresolved rows are reported with their
    1-based row number and skipped. Only unreadable or empty input aborts.
    """

    try:
        rows = split_table_rows(text)
    except TableFormatError as exc:
        raise CostTableImportError("COST_TABLE_UNREADABLE", exc.detail) from exc

    if not any(len(row) > 0 and any(cell != "" for cell in row) for row in rows):
        raise CostTableImportError("COST_TABLE_EMPTY", "Cost table has no rows.")

    index = build_identity_index(catalog)
    state = ImportState()

    character_updates: Dict[str, List[float]] = {}
    equipment_updates: Dict[str, List[float]] = {}
    unresolved_characters: List[Dict[str, Any]] = []
    unresolved_equipment: List[Dict[str, Any]] = []
    ignored_row_total = 0

    for row_no, cells in enumerate(rows, start=1):
        kind = classify_row(cells)

        if kind == ROW_BLANK:
            continue

        if kind == ROW_HEADER:
            section, mapping = detect_header(cells)
            state.adopt_header(section, mapping)
            continue

        if kind == ROW_METADATA:
            if _METADATA_NAME_RE.match(cells[0]):
                state.profile_name = (single_line_name(_cell(cells, 1)) or DEFAULT_IMPORT_NAME)[:PROFILE_NAME_MAX_LEN]
            continue

        if kind == ROW_BANNER:
            if _CHARACTERS_BANNER_RE.match(cells[0]):
                state.enter_section(SECTION_CHARACTERS)
            else:
                state.enter_section(SECTION_LIGHT_CONES)
            continue

        mapping = state.header
        if state.section == SECTION_NONE or state.header_state == HEADER_UNKNOWN or mapping is None:
            ignored_row_total += 1
            continue

        ref_id, label = _resolve_data_row(index, state.section, cells, mapping)
        if ref_id is None:
            if label == "":
                ignored_row_total += 1
                continue
            unresolved = {"label": label, "row": int(row_no)}
            logger.debug(f"Unresolved {state.section.lower()} row {row_no}: {label!r}")
            if state.section == SECTION_CHARACTERS:
                unresolved_characters.append(unresolved)
            else:
                unresolved_equipment.append(unresolved)
            continue

        if state.section == SECTION_CHARACTERS:
            character_updates[ref_id] = _level_values(cells, mapping)
        else:
            equipment_updates[ref_id] = _level_values(cells, mapping)

    if base_profile is not None:
        profile_id = base_profile.id
        profile_name = state.profile_name or base_profile.name or DEFAULT_IMPORT_NAME
    else:
        profile_id = NEW_PROFILE_ID
        profile_name = state.profile_name or DEFAULT_IMPORT_NAME

    baseline = build_zero_profile(catalog, profile_id=profile_id, name=profile_name)
    character_costs = dict(baseline.character_costs)
    character_costs.update(character_updates)
    equipment_costs = dict(baseline.equipment_costs)
    equipment_costs.update(equipment_updates)
    profile = CostProfile(
        id=profile_id,
        name=profile_name,
        character_costs=character_costs,
        equipment_costs=equipment_costs,
    )

    changes = cost_changes(catalog, base_profile, profile) if base_profile is not None else []

    notes = _build_notes(len(character_updates), len(equipment_updates), unresolved_characters, unresolved_equipment)
    status = "UNRESOLVED_PRESENT" if unresolved_characters or unresolved_equipment else "OK"

    if status == "OK":
        logger.info(
            f"Imported cost table into profile {profile_id}: "
            f"{len(character_updates)} characters, {len(equipment_updates)} light cones"
        )
    else:
        logger.warning(
            f"Imported cost table into profile {profile_id} with "
            f"{len(unresolved_characters)} unresolved characters, {len(unresolved_equipment)} unresolved light cones"
        )

    return {
        "version": COST_TABLE_CODEC_VERSION,
        "status": status,
        "snapshot_id": catalog.snapshot_id,
        "profile": profile,
        "summary": {
            "characters_updated": len(character_updates),
            "equipment_updated": len(equipment_updates),
            "unresolved_characters_total": len(unresolved_characters),
            "unresolved_equipment_total": len(unresolved_equipment),
            "unresolved_characters": _preview(unresolved_characters),
            "unresolved_equipment": _preview(unresolved_equipment),
            "ignored_row_total": int(ignored_row_total),
            "notes": notes,
            "changes": changes,
        },
        "unresolved_characters": unresolved_characters,
        "unresolved_equipment": unresolved_equipment,
    }


def build_cost_table_rows(
    catalog: CatalogSnapshot,
    profile: CostProfile | None = None,
    name: str | None = None,
) -> List[List[Any]]:
    if isinstance(name, str) and name.strip() != "":
        table_name = single_line_name(name)
    elif profile is not None and profile.name:
        table_name = single_line_name(profile.name)
    else:
        table_name = DEFAULT_TEMPLATE_NAME

    character_costs = profile.character_costs if profile is not None else {}
    equipment_costs = profile.equipment_costs if profile is not None else {}

    rows: List[List[Any]] = [
        [METADATA_NAME_LABEL, table_name],
        [METADATA_VERSION_LABEL, COST_TABLE_FORMAT_VERSION],
        [],
        [CHARACTERS_BANNER],
        ["code", "name", *CHARACTER_LEVEL_LABELS],
    ]
    for entry in catalog.characters_by_display_name():
        values = coerce_cost_matrix(character_costs.get(entry.code), CHARACTER_LEVELS)
        rows.append([entry.code, entry.name or entry.code, *values])

    rows.append([])
    rows.append([EQUIPMENT_BANNER])
    rows.append(["id", "name", "subname", *EQUIPMENT_LEVEL_LABELS])
    for entry in catalog.equipment_by_display_name():
        values = coerce_cost_matrix(equipment_costs.get(entry.id), EQUIPMENT_LEVELS)
        rows.append([entry.id, entry.name, entry.subname or "", *values])

    return rows


def export_cost_table(
    catalog: CatalogSnapshot,
    profile: CostProfile | None = None,
    name: str | None = None,
) -> str:
    return format_table_rows(build_cost_table_rows(catalog, profile=profile, name=name))


def build_template_table(catalog: CatalogSnapshot, name: str = DEFAULT_TEMPLATE_NAME) -> str:
    return export_cost_table(catalog, profile=None, name=name)

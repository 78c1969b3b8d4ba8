from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class CharacterEntry:
    code: str
    name: str
    subname: str | None = None
    rarity: int = 0
    image_ref: str = ""
    limited: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.subname or self.code


@dataclass(frozen=True)
class EquipmentEntry:
    id: str
    name: str
    subname: str | None = None
    rarity: int = 0
    limited: bool = False
    image_ref: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.subname or self.id


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the catalog a caller fetched.

    A fresh fetch replaces the whole snapshot; nothing in the engine mutates it.
    """

    snapshot_id: str
    characters: Tuple[CharacterEntry, ...] = ()
    equipment: Tuple[EquipmentEntry, ...] = ()
    _characters_by_code: Dict[str, CharacterEntry] = field(default_factory=dict, init=False, repr=False, compare=False)
    _equipment_by_id: Dict[str, EquipmentEntry] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "characters", tuple(self.characters))
        object.__setattr__(self, "equipment", tuple(self.equipment))
        self._characters_by_code.update({entry.code: entry for entry in self.characters})
        self._equipment_by_id.update({entry.id: entry for entry in self.equipment})

    def character(self, code: str) -> CharacterEntry | None:
        if not isinstance(code, str):
            return None
        return self._characters_by_code.get(code)

    def equipment_item(self, equipment_id: str) -> EquipmentEntry | None:
        if not isinstance(equipment_id, str):
            return None
        return self._equipment_by_id.get(equipment_id)

    def character_codes(self) -> Tuple[str, ...]:
        return tuple(entry.code for entry in self.characters)

    def equipment_ids(self) -> Tuple[str, ...]:
        return tuple(entry.id for entry in self.equipment)

    def characters_by_display_name(self) -> Tuple[CharacterEntry, ...]:
        return tuple(
            sorted(
                self.characters,
                key=lambda entry: (entry.display_name.casefold(), entry.display_name, entry.code),
            )
        )

    def equipment_by_display_name(self) -> Tuple[EquipmentEntry, ...]:
        return tuple(
            sorted(
                self.equipment,
                key=lambda entry: (entry.display_name.casefold(), entry.display_name, entry.id),
            )
        )

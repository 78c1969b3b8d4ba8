from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from api.engine.cost_profile_v1 import CostProfile
from api.engine.cost_table_codec_v1 import (
    COST_TABLE_CODEC_VERSION,
    ROW_BANNER,
    ROW_BLANK,
    ROW_DATA,
    ROW_HEADER,
    ROW_METADATA,
    CostTableImportError,
    build_template_table,
    classify_row,
    export_cost_table,
    import_cost_table,
)
from catalog.db import load_catalog_snapshot
from tests.catalog_fixture_harness import (
    CATALOG_FIXTURE_SNAPSHOT_ID,
    create_catalog_fixture_db,
    set_catalog_fixture_env,
)


_CHARACTER_HEADER = "code,name,M0,M1,M2,M3,M4,M5,M6"
_EQUIPMENT_HEADER = "id,name,subname,P1,P2,P3,P4,P5"


class CostTableCodecV1Tests(unittest.TestCase):
    _tmp_dir_ctx: tempfile.TemporaryDirectory[str] | None = None
    _db_env_ctx = None

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        cls._tmp_dir_ctx = tempfile.TemporaryDirectory()
        db_path = create_catalog_fixture_db(Path(cls._tmp_dir_ctx.name))
        cls._db_env_ctx = set_catalog_fixture_env(db_path)
        cls._db_env_ctx.__enter__()

    @classmethod
    def tearDownClass(cls) -> None:
        try:
            if cls._db_env_ctx is not None:
                cls._db_env_ctx.__exit__(None, None, None)
                cls._db_env_ctx = None
        finally:
            if cls._tmp_dir_ctx is not None:
                cls._tmp_dir_ctx.cleanup()
                cls._tmp_dir_ctx = None
            super().tearDownClass()

    def setUp(self) -> None:
        self.catalog = load_catalog_snapshot(CATALOG_FIXTURE_SNAPSHOT_ID)

    def test_template_layout(self) -> None:
        text = build_template_table(self.catalog)
        self.assertEqual(
            text.split("\n"),
            [
                "NAME,My Preset",
                "VERSION,2",
                "",
                "Characters",
                _CHARACTER_HEADER,
                "1308,Acheron,0,0,0,0,0,0,0",
                "1009,Asta,0,0,0,0,0,0,0",
                "1305,Dr. Ratio,0,0,0,0,0,0,0",
                "1003,Himeko,0,0,0,0,0,0,0",
                "1112,Topaz & Numby,0,0,0,0,0,0,0",
                "",
                "Light Cones",
                _EQUIPMENT_HEADER,
                "23024,Along the Passing Shore,,0,0,0,0,0",
                "23020,Baptism of Pure Thought,,0,0,0,0,0",
                "21004,Memories of the Past,,0,0,0,0,0",
                "23000,Night on the Milky Way,,0,0,0,0,0",
                "24001,Shared Feeling,Standard,0,0,0,0,0",
                "24002,Shared Feeling,Signature,0,0,0,0,0",
            ],
        )

    def test_export_then_import_reproduces_profile(self) -> None:
        profile = CostProfile(
            id="p1",
            name="Weekly, v2",
            character_costs={
                "1305": [1.0, 1.5, 2.0, 2.0, 2.5, 2.5, 3.0],
                "1112": [0.25, 0.5, 0.75, 1.0, 1.25, 1.5, 1.75],
            },
            equipment_costs={"24002": [0.5, 0.5, 0.75, 0.75, 1.0], "23020": [0.25] * 5},
        )

        exported = export_cost_table(self.catalog, profile)
        payload = import_cost_table(exported, self.catalog)

        self.assertEqual(payload["version"], COST_TABLE_CODEC_VERSION)
        self.assertEqual(payload["status"], "OK")
        imported = payload["profile"]
        self.assertEqual(imported.name, "Weekly, v2")
        self.assertEqual(imported.id, "NEW")
        self.assertEqual(imported.character_costs["1305"], profile.character_costs["1305"])
        self.assertEqual(imported.character_costs["1112"], profile.character_costs["1112"])
        self.assertEqual(imported.character_costs["1009"], [0.0] * 7)
        self.assertEqual(imported.equipment_costs["24002"], profile.equipment_costs["24002"])
        self.assertEqual(imported.equipment_costs["24001"], [0.0] * 5)
        self.assertEqual(payload["summary"]["characters_updated"], 5)
        self.assertEqual(payload["summary"]["equipment_updated"], 6)

        again = import_cost_table(export_cost_table(self.catalog, imported), self.catalog)["profile"]
        self.assertEqual(again.character_costs, imported.character_costs)
        self.assertEqual(again.equipment_costs, imported.equipment_costs)

    def test_semicolon_sheet_with_reordered_columns_and_repeated_sections(self) -> None:
        text = "\n".join(
            [
                "NAME;Weekly",
                "VERSION;2",
                "",
                "Characters",
                "name;code;M0;M1;M2;M3;M4;M5;M6",
                "Dr Ratio;;1,3;1;1;1;1;1;1",
                "Nobody;;1;1;1;1;1;1;1",
                "light cone",
                "ID;Name;Subname;P1;P2;P3;P4;P5",
                ";Shared Feeling;;1;1;1;1;1",
                ";Shared Feeling;Signature;0,5;0,5;0,5;0,5;0,5",
                "CHARACTERS",
                "Asta;;2;2;2;2;2;2;2",
            ]
        )

        payload = import_cost_table(text, self.catalog)
        profile = payload["profile"]

        self.assertEqual(payload["status"], "UNRESOLVED_PRESENT")
        self.assertEqual(profile.name, "Weekly")
        self.assertEqual(profile.character_costs["1305"], [1.25, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0])
        self.assertEqual(profile.character_costs["1009"], [2.0] * 7)
        self.assertEqual(profile.character_costs["1308"], [0.0] * 7)
        self.assertEqual(profile.equipment_costs["24002"], [0.5] * 5)
        self.assertEqual(profile.equipment_costs["24001"], [0.0] * 5)
        self.assertEqual(payload["unresolved_characters"], [{"label": "Nobody", "row": 7}])
        self.assertEqual(payload["unresolved_equipment"], [{"label": "Shared Feeling", "row": 10}])

        summary = payload["summary"]
        self.assertEqual(summary["characters_updated"], 2)
        self.assertEqual(summary["equipment_updated"], 1)
        self.assertEqual(
            summary["notes"],
            [
                "Updated 2 characters, 1 light cones",
                "1 character name(s) not recognized: Nobody @row 7",
                "1 light cone name(s) not recognized: Shared Feeling @row 10",
            ],
        )

    def test_rows_before_a_header_are_ignored(self) -> None:
        text = "1305,Dr. Ratio,1,1\nCharacters\n1305,Dr. Ratio,1\n"
        payload = import_cost_table(text, self.catalog)

        self.assertEqual(payload["status"], "OK")
        self.assertEqual(payload["summary"]["ignored_row_total"], 2)
        self.assertEqual(payload["summary"]["notes"], ["No cost rows recognized"])
        self.assertEqual(payload["profile"].character_costs["1305"], [0.0] * 7)

    def test_base_profile_keeps_identity_and_drops_stale_ids(self) -> None:
        base = CostProfile(
            id="p9",
            name="Mine",
            character_costs={"1201": [1.0] * 7, "1305": [3.0] * 7},
            equipment_costs={},
        )
        text = "\n".join(["Characters", _CHARACTER_HEADER, "1009,Asta,1,1,1,1,1,1,1"])

        profile = import_cost_table(text, self.catalog, base_profile=base)["profile"]

        self.assertEqual((profile.id, profile.name), ("p9", "Mine"))
        self.assertNotIn("1201", profile.character_costs)
        self.assertEqual(profile.character_costs["1305"], [0.0] * 7)
        self.assertEqual(sorted(profile.character_costs), sorted(self.catalog.character_codes()))

    def test_tab_in_profile_name_keeps_comma_layout(self) -> None:
        profile = CostProfile(
            id="p1",
            name="Week\t1",
            character_costs={"1305": [1.0, 1.5, 2.0, 2.0, 2.5, 2.5, 3.0]},
            equipment_costs={"23020": [0.25, 0.25, 0.5, 0.5, 0.75]},
        )

        exported = export_cost_table(self.catalog, profile)
        self.assertTrue(exported.startswith("NAME,Week 1\n"))

        payload = import_cost_table(exported, self.catalog)
        imported = payload["profile"]
        self.assertEqual(payload["status"], "OK")
        self.assertEqual(imported.name, "Week 1")
        self.assertEqual(imported.character_costs["1305"], profile.character_costs["1305"])
        self.assertEqual(imported.equipment_costs["23020"], profile.equipment_costs["23020"])
        self.assertEqual(payload["summary"]["characters_updated"], 5)

    def test_line_break_in_export_name_is_flattened(self) -> None:
        exported = export_cost_table(self.catalog, name="Season\r\n3")
        self.assertTrue(exported.startswith("NAME,Season 3\nVERSION,2\n"))
        self.assertEqual(import_cost_table(exported, self.catalog)["profile"].name, "Season 3")

    def test_changes_list_against_base_profile(self) -> None:
        base = CostProfile(id="p9", name="Mine", character_costs={"1305": [1.0] * 7}, equipment_costs={})
        text = "\n".join(
            [
                "Characters",
                _CHARACTER_HEADER,
                "1305,Dr. Ratio,2,1,1,1,1,1,1",
                "Light Cones",
                _EQUIPMENT_HEADER,
                "23020,Baptism of Pure Thought,,0.25,0.25,0.5,0.5,0.75",
            ]
        )

        with_base = import_cost_table(text, self.catalog, base_profile=base)["summary"]
        without_base = import_cost_table(text, self.catalog)["summary"]

        self.assertEqual(
            with_base["changes"],
            [
                "Dr. Ratio M0 1 \u2192 2",
                "Baptism of Pure Thought P1 0 \u2192 0.25",
                "Baptism of Pure Thought P2 0 \u2192 0.25",
                "Baptism of Pure Thought P3 0 \u2192 0.5",
                "Baptism of Pure Thought P4 0 \u2192 0.5",
                "Baptism of Pure Thought P5 0 \u2192 0.75",
            ],
        )
        self.assertEqual(without_base["changes"], [])

    def test_name_metadata_is_truncated(self) -> None:
        text = "\n".join(["NAME," + "x" * 50, "Characters", _CHARACTER_HEADER, "1009,Asta,1,1,1,1,1,1,1"])
        profile = import_cost_table(text, self.catalog)["profile"]
        self.assertEqual(profile.name, "x" * 40)

    def test_unresolved_preview_is_capped(self) -> None:
        lines = ["Characters", _CHARACTER_HEADER]
        lines.extend(f",Ghost {index},1,1,1,1,1,1,1" for index in range(6))
        payload = import_cost_table("\n".join(lines), self.catalog)
        summary = payload["summary"]

        self.assertEqual(summary["unresolved_characters_total"], 6)
        self.assertEqual(len(summary["unresolved_characters"]), 5)
        self.assertEqual(summary["unresolved_characters"][0], "Ghost 0 @row 3")
        self.assertIn("6 character name(s) not recognized", summary["notes"])

    def test_empty_or_unreadable_input_is_fatal(self) -> None:
        for text in ("", "\n\n , \n"):
            with self.assertRaises(CostTableImportError) as err:
                import_cost_table(text, self.catalog)
            self.assertEqual(err.exception.code, "COST_TABLE_EMPTY")

        with self.assertRaises(CostTableImportError) as err:
            import_cost_table(None, self.catalog)
        self.assertEqual(err.exception.to_unknown()["code"], "COST_TABLE_UNREADABLE")


class ClassifyRowTests(unittest.TestCase):
    def test_row_kinds(self) -> None:
        self.assertEqual(classify_row([]), ROW_BLANK)
        self.assertEqual(classify_row(["", ""]), ROW_BLANK)
        self.assertEqual(classify_row(["NAME", "x"]), ROW_METADATA)
        self.assertEqual(classify_row(["version", "2"]), ROW_METADATA)
        self.assertEqual(classify_row(["LightCones"]), ROW_BANNER)
        self.assertEqual(classify_row(_CHARACTER_HEADER.split(",")), ROW_HEADER)
        self.assertEqual(classify_row(["name", "M0", "M1", "M2", "M3", "M4", "M5", "M6"]), ROW_HEADER)
        self.assertEqual(classify_row(["1305", "Dr. Ratio"]), ROW_DATA)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from tests.catalog_fixture_harness import (
    CATALOG_FIXTURE_OLD_SNAPSHOT_ID,
    CATALOG_FIXTURE_SNAPSHOT_ID,
    create_catalog_fixture_db,
    set_catalog_fixture_env,
)

try:
    from fastapi.testclient import TestClient
    from api.main import app

    _IMPORT_ERROR: Exception | None = None
except Exception as exc:  # pragma: no cover - environment-dependent dependency loading
    TestClient = None
    app = None
    _IMPORT_ERROR = exc


class CostEngineEndpointTests(unittest.TestCase):
    _tmp_dir_ctx: tempfile.TemporaryDirectory[str] | None = None
    _db_env_ctx = None

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        if _IMPORT_ERROR is not None:
            return

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
        if _IMPORT_ERROR is not None:
            self.skipTest(f"FastAPI integration dependencies unavailable: {_IMPORT_ERROR}")

    def test_snapshots_and_catalog(self) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            listing = client.get("/snapshots")
            catalog = client.get(f"/catalog/{CATALOG_FIXTURE_OLD_SNAPSHOT_ID}")
            missing = client.get("/catalog/NOPE")

        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()["snapshots"][0]["snapshot_id"], CATALOG_FIXTURE_SNAPSHOT_ID)
        self.assertEqual(catalog.status_code, 200)
        self.assertEqual([row["code"] for row in catalog.json()["characters"]], ["1305", "1201"])
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["detail"]["code"], "CATALOG_SNAPSHOT_NOT_FOUND")

    def test_template_defaults_to_latest_snapshot(self) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post("/cost_table/template", json={"name": "Season 3"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["snapshot_id"], CATALOG_FIXTURE_SNAPSHOT_ID)
        self.assertEqual(body["format_version"], 2)
        self.assertTrue(body["text"].startswith("NAME,Season 3\nVERSION,2\n\nCharacters\n"))

    def test_export_then_import(self) -> None:
        profile = {
            "id": "p1",
            "name": "Weekly",
            "character_costs": {"1305": [1, 1.5, 2, 2, 2.5, 2.5, 3], "1201": [9] * 7},
            "equipment_costs": {"23020": [0.25, 0.25, 0.5, 0.5, 0.75]},
        }
        with TestClient(app, raise_server_exceptions=False) as client:
            exported = client.post(
                "/cost_table/export",
                json={"snapshot_id": CATALOG_FIXTURE_SNAPSHOT_ID, "profile": profile},
            )
            self.assertEqual(exported.status_code, 200)
            text = exported.json()["text"] + "\nCharacters\n,Nobody,1,1,1,1,1,1,1"

            imported = client.post(
                "/cost_table/import",
                json={"snapshot_id": CATALOG_FIXTURE_SNAPSHOT_ID, "text": text, "base_profile": profile},
            )

        self.assertEqual(imported.status_code, 200)
        body = imported.json()
        self.assertEqual(body["status"], "UNRESOLVED_PRESENT")
        self.assertEqual(body["profile"]["id"], "p1")
        self.assertEqual(body["profile"]["character_costs"]["1305"], [1.0, 1.5, 2.0, 2.0, 2.5, 2.5, 3.0])
        self.assertNotIn("1201", body["profile"]["character_costs"])
        self.assertEqual(body["summary"]["unresolved_characters_total"], 1)
        self.assertEqual(body["summary"]["changes"], [])
        self.assertEqual(body["unresolved_characters"][0]["label"], "Nobody")

    def test_import_rejects_empty_table(self) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post("/cost_table/import", json={"text": "  \n\n"})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "COST_TABLE_EMPTY")

    def test_team_cost_compares_rulesets(self) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post(
                "/team_cost",
                json={
                    "snapshot_id": CATALOG_FIXTURE_SNAPSHOT_ID,
                    "slots": [
                        {"character_id": "1305", "level": 6, "equipment_id": "23020", "equipment_level": 5},
                        {"character_id": "1009", "level": 0, "equipment_id": "21004", "equipment_level": 5},
                    ],
                    "opponent_slots": [{"character_id": "1003", "level": 0}],
                    "featured": [{"code": "1009", "rule": "none", "customCost": 0}],
                },
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["totals"], {"ruleset_a": 3.75, "ruleset_b": 3.75})
        self.assertEqual(body["advantages"]["ruleset_a"]["cost_advantage"], 2.75)
        self.assertEqual(body["advantages"]["ruleset_a"]["cycle_penalty"], 0.6875)

    def test_team_cost_unknown_preset(self) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post("/team_cost", json={"owner_id": "nobody", "preset_id": "missing"})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["code"], "PRESET_NOT_FOUND")

    def test_team_cost_per_ruleset_sources(self) -> None:
        slots = [{"character_id": "1305", "level": 0, "equipment_id": "23020", "equipment_level": 1}]
        weekly = {"id": "weekly", "name": "Weekly", "character_costs": {"1305": [2] * 7}, "equipment_costs": {}}
        with TestClient(app, raise_server_exceptions=False) as client:
            split = client.post(
                "/team_cost",
                json={"snapshot_id": CATALOG_FIXTURE_SNAPSHOT_ID, "slots": slots, "ruleset_a": {"profile": weekly}},
            )
            shared = client.post(
                "/team_cost",
                json={
                    "snapshot_id": CATALOG_FIXTURE_SNAPSHOT_ID,
                    "slots": slots,
                    "profile": weekly,
                    "ruleset_b": {"preset_id": " "},
                },
            )
            missing = client.post(
                "/team_cost",
                json={"owner_id": "nobody", "slots": slots, "ruleset_b": {"preset_id": "missing"}},
            )

        self.assertEqual(split.status_code, 200)
        body = split.json()
        self.assertEqual(body["totals"], {"ruleset_a": 2.0, "ruleset_b": 1.25})
        self.assertEqual([row["cost_profile_id"] for row in body["breakdowns"]], ["weekly", None])
        self.assertFalse(body["breakdowns"][0]["slots"][0]["signature_equipment"])
        self.assertEqual(shared.json()["totals"], {"ruleset_a": 2.0, "ruleset_b": 2.25})
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["detail"]["code"], "PRESET_NOT_FOUND")

    def test_featured_and_match_setup(self) -> None:
        featured = [{"code": "1305", "rule": "globalBan"}, {"id": "23020", "rule": "globalPick"}]
        with TestClient(app, raise_server_exceptions=False) as client:
            validated = client.post("/featured/validate", json={"featured": featured})
            setup = client.post("/match_setup", json={"featured": featured[:1], "cycle_breakpoint": 3})

        self.assertEqual(validated.status_code, 200)
        self.assertEqual(validated.json()["invalid_indices"], [1])
        self.assertEqual(setup.status_code, 200)
        self.assertEqual(setup.json()["setup"]["cycle_breakpoint"], 3)

    def test_cost_profile_validate(self) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post(
                "/cost_profile/validate",
                json={"profile": {"name": "Ok", "character_costs": {}, "equipment_costs": {}}},
            )

        self.assertEqual(response.status_code, 200)
        codes = set(row["code"] for row in response.json()["violations"])
        self.assertEqual(codes, {"COST_PROFILE_ID_MISSING"})

    def test_preset_lifecycle(self) -> None:
        owner = "endpoint-owner"
        profile = {"name": "Weekly", "character_costs": {"1305": [2] * 7}, "equipment_costs": {}}
        with TestClient(app, raise_server_exceptions=False) as client:
            created = client.post(
                "/presets",
                json={"owner_id": owner, "snapshot_id": CATALOG_FIXTURE_SNAPSHOT_ID, "profile": profile},
            )
            self.assertEqual(created.status_code, 200)
            preset_id = created.json()["preset_id"]

            conflict = client.post("/presets", json={"owner_id": owner, "profile": {"name": "WEEKLY"}})
            second = client.post("/presets", json={"owner_id": owner, "profile": {"name": "Other"}})
            limited = client.post("/presets", json={"owner_id": owner, "profile": {"name": "Third"}})
            invalid = client.post("/presets", json={"owner_id": " ", "profile": {"name": "X"}})
            listing = client.get("/presets", params={"owner_id": owner})
            fetched = client.get(f"/presets/{preset_id}", params={"owner_id": owner})
            priced = client.post(
                "/team_cost",
                json={"owner_id": owner, "preset_id": preset_id, "slots": [{"character_id": "1305", "level": 0}]},
            )
            deleted = client.delete(f"/presets/{preset_id}", params={"owner_id": owner})
            deleted_again = client.delete(f"/presets/{preset_id}", params={"owner_id": owner})

        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["detail"]["code"], "PRESET_NAME_CONFLICT")
        self.assertEqual(second.status_code, 200)
        self.assertEqual(limited.status_code, 409)
        self.assertEqual(limited.json()["detail"]["code"], "PRESET_LIMIT_REACHED")
        self.assertEqual(invalid.status_code, 422)
        self.assertEqual(len(listing.json()["presets"]), 2)
        self.assertEqual(fetched.json()["character_costs"]["1305"], [2.0] * 7)
        self.assertEqual(sorted(fetched.json()["character_costs"]), ["1003", "1009", "1112", "1305", "1308"])
        self.assertEqual(priced.json()["totals"]["ruleset_a"], 2.0)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted_again.status_code, 404)


if __name__ == "__main__":
    unittest.main()

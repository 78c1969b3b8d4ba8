import os
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from catalog.adapter import catalog_to_payload
from catalog.db import (
    CatalogSnapshotNotFoundError,
    latest_snapshot_id,
    list_snapshots,
    load_catalog_snapshot,
    resolve_db_path,
)
from catalog.snapshot import CatalogSnapshot
from api.engine.constants import (
    COST_TABLE_FORMAT_VERSION,
    DEFAULT_CYCLE_BREAKPOINT,
    DEFAULT_TEMPLATE_NAME,
    ENGINE_VERSION,
)
from api.engine.cost_aggregate_v1 import (
    apply_featured_overrides,
    build_ruleset_a,
    build_ruleset_b,
    compare_rulesets,
    cost_advantage,
    cycle_penalty,
    team_slots_from_payload,
)
from api.engine.cost_profile_v1 import (
    CostProfile,
    cost_profile_from_payload,
    cost_profile_to_payload,
    reconcile_cost_profile,
    validate_cost_profile,
)
from api.engine.cost_table_codec_v1 import (
    CostTableImportError,
    build_template_table,
    export_cost_table,
    import_cost_table,
    single_line_name,
)
from api.engine.featured_validate_v1 import validate_featured_entries
from api.engine.match_setup_v1 import build_match_setup
from api.engine.preset_store_v1 import (
    PresetLimitError,
    PresetNameConflictError,
    PresetNotFoundError,
    delete_preset,
    get_preset,
    list_presets,
    save_preset,
)


class CostTableTemplateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = Field(default=None, description="Catalog snapshot; latest when omitted")
    name: str = DEFAULT_TEMPLATE_NAME


class CostTableExportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict)
    name: Optional[str] = None


class CostTableImportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = None
    text: str = Field(..., description="Raw cost table text (comma, semicolon or tab separated)")
    base_profile: Optional[Dict[str, Any]] = None


class CostTableTextResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: str
    format_version: int
    name: str
    text: str


class CostTableImportSummaryV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    characters_updated: int
    equipment_updated: int
    unresolved_characters_total: int
    unresolved_equipment_total: int
    unresolved_characters: List[str] = Field(default_factory=list)
    unresolved_equipment: List[str] = Field(default_factory=list)
    ignored_row_total: int = 0
    notes: List[str] = Field(default_factory=list)
    changes: List[str] = Field(default_factory=list)


class UnresolvedLabelV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: str
    row: int


class CostTableImportResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str
    status: str
    snapshot_id: str
    profile: Dict[str, Any]
    summary: CostTableImportSummaryV1
    unresolved_characters: List[UnresolvedLabelV1] = Field(default_factory=list)
    unresolved_equipment: List[UnresolvedLabelV1] = Field(default_factory=list)


class RulesetSourceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    profile: Optional[Dict[str, Any]] = None
    preset_id: Optional[str] = None


class TeamCostRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = None
    slots: List[Optional[Dict[str, Any]]] = Field(default_factory=list)
    opponent_slots: Optional[List[Optional[Dict[str, Any]]]] = None
    profile: Optional[Dict[str, Any]] = None
    owner_id: Optional[str] = None
    preset_id: Optional[str] = None
    featured: List[Dict[str, Any]] = Field(default_factory=list)
    ruleset_a: Optional[RulesetSourceRequest] = None
    ruleset_b: Optional[RulesetSourceRequest] = None
    cycle_breakpoint: int = DEFAULT_CYCLE_BREAKPOINT


class FeaturedValidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = None
    featured: List[Any] = Field(default_factory=list)


class MatchSetupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = None
    featured: List[Any] = Field(default_factory=list)
    cost_profile_id: Optional[str] = None
    cycle_breakpoint: Any = DEFAULT_CYCLE_BREAKPOINT


class CostProfileValidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_id: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict)


class PresetSaveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner_id: str
    snapshot_id: Optional[str] = None
    profile: Dict[str, Any]


app = FastAPI(title="Cost Catalog Engine", version=ENGINE_VERSION)

DEV_CORS = os.getenv("COST_ENGINE_DEV_CORS", "0") == "1"

if DEV_CORS:
    dev_ports = range(5173, 5181)
    allow_origins = [f"http://127.0.0.1:{port}" for port in dev_ports] + [
        f"http://localhost:{port}" for port in dev_ports
    ]
else:
    allow_origins = [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _db_path() -> str:
    return str(resolve_db_path())


def _load_catalog(snapshot_id: Optional[str]) -> CatalogSnapshot:
    token = snapshot_id.strip() if isinstance(snapshot_id, str) else ""
    if token == "":
        token = latest_snapshot_id() or ""
    try:
        return load_catalog_snapshot(token)
    except CatalogSnapshotNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.to_unknown()) from exc


@app.get("/health")
def health():
    return {
        "ok": True,
        "engine_version": ENGINE_VERSION,
        "time": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/snapshots")
def snapshots(limit: int = 20):
    return {"snapshots": list_snapshots(limit=limit)}


@app.get("/catalog/{snapshot_id}")
def catalog_snapshot(snapshot_id: str):
    return catalog_to_payload(_load_catalog(snapshot_id))


@app.post("/cost_table/template", response_model=CostTableTextResponse)
def cost_table_template(req: CostTableTemplateRequest):
    snapshot = _load_catalog(req.snapshot_id)
    name = single_line_name(req.name) or DEFAULT_TEMPLATE_NAME
    return CostTableTextResponse(
        snapshot_id=snapshot.snapshot_id,
        format_version=COST_TABLE_FORMAT_VERSION,
        name=name,
        text=build_template_table(snapshot, name=name),
    )


@app.post("/cost_table/export", response_model=CostTableTextResponse)
def cost_table_export(req: CostTableExportRequest):
    snapshot = _load_catalog(req.snapshot_id)
    profile = reconcile_cost_profile(cost_profile_from_payload(req.profile), snapshot)
    name = single_line_name(req.name or "") or single_line_name(profile.name)
    return CostTableTextResponse(
        snapshot_id=snapshot.snapshot_id,
        format_version=COST_TABLE_FORMAT_VERSION,
        name=name,
        text=export_cost_table(snapshot, profile=profile, name=name),
    )


@app.post("/cost_table/import", response_model=CostTableImportResponse)
def cost_table_import(req: CostTableImportRequest):
    snapshot = _load_catalog(req.snapshot_id)
    base_profile = cost_profile_from_payload(req.base_profile) if req.base_profile is not None else None
    try:
        payload = import_cost_table(req.text, snapshot, base_profile=base_profile)
    except CostTableImportError as exc:
        raise HTTPException(status_code=422, detail=exc.to_unknown()) from exc

    payload["profile"] = cost_profile_to_payload(payload["profile"])
    return CostTableImportResponse(**payload)


@app.post("/cost_profile/validate")
def cost_profile_validate(req: CostProfileValidateRequest):
    snapshot = _load_catalog(req.snapshot_id)
    return validate_cost_profile(req.profile, snapshot)


def _source_profile(
    owner_id: Optional[str],
    profile: Optional[Dict[str, Any]],
    preset_id: Optional[str],
) -> Optional[CostProfile]:
    if profile is not None:
        return cost_profile_from_payload(profile)
    if not isinstance(preset_id, str) or preset_id.strip() == "":
        return None
    stored = get_preset(_db_path(), owner_id=owner_id or "", preset_id=preset_id)
    if stored is None:
        error = PresetNotFoundError(owner_id or "", "Cost preset not found.", preset_id=preset_id)
        raise HTTPException(status_code=404, detail=error.to_unknown())
    return stored


def _ruleset_profile(req: TeamCostRequest, source: Optional[RulesetSourceRequest]) -> Optional[CostProfile]:
    # A ruleset without its own source shares the request-level profile or preset.
    if source is not None and (source.profile is not None or (source.preset_id or "").strip() != ""):
        return _source_profile(req.owner_id, source.profile, source.preset_id)
    return _source_profile(req.owner_id, req.profile, req.preset_id)


@app.post("/team_cost")
def team_cost(req: TeamCostRequest):
    snapshot = _load_catalog(req.snapshot_id)

    rulesets = [
        apply_featured_overrides(build_ruleset_a(snapshot, _ruleset_profile(req, req.ruleset_a)), req.featured),
        apply_featured_overrides(build_ruleset_b(snapshot, _ruleset_profile(req, req.ruleset_b)), req.featured),
    ]
    slots = team_slots_from_payload(req.slots)
    payload = compare_rulesets(slots, rulesets, catalog=snapshot)
    payload["snapshot_id"] = snapshot.snapshot_id

    if req.opponent_slots is not None:
        opponent = team_slots_from_payload(req.opponent_slots)
        advantages: Dict[str, Any] = {}
        for ruleset in rulesets:
            advantage = cost_advantage(slots, opponent, ruleset)
            advantages[ruleset.ruleset_id] = {
                "cost_advantage": advantage,
                "cycle_penalty": cycle_penalty(breakpoint=req.cycle_breakpoint, advantage=advantage),
            }
        payload["advantages"] = advantages

    return payload


@app.post("/featured/validate")
def featured_validate(req: FeaturedValidateRequest):
    snapshot = _load_catalog(req.snapshot_id) if req.snapshot_id is not None else None
    return validate_featured_entries(req.featured, catalog=snapshot)


@app.post("/match_setup")
def match_setup(req: MatchSetupRequest):
    snapshot = _load_catalog(req.snapshot_id) if req.snapshot_id is not None else None
    return build_match_setup(
        req.featured,
        cost_profile_id=req.cost_profile_id,
        cycle_breakpoint=req.cycle_breakpoint,
        catalog=snapshot,
    )


@app.get("/presets")
def presets(owner_id: str):
    return {"owner_id": owner_id, "presets": list_presets(_db_path(), owner_id=owner_id)}


@app.get("/presets/{preset_id}")
def preset(preset_id: str, owner_id: str):
    profile = get_preset(_db_path(), owner_id=owner_id, preset_id=preset_id)
    if profile is None:
        error = PresetNotFoundError(owner_id, "Cost preset not found.", preset_id=preset_id)
        raise HTTPException(status_code=404, detail=error.to_unknown())
    return cost_profile_to_payload(profile)


@app.post("/presets")
def preset_save(req: PresetSaveRequest):
    profile = cost_profile_from_payload(req.profile)
    if req.snapshot_id is not None:
        profile = reconcile_cost_profile(profile, _load_catalog(req.snapshot_id))
    try:
        return save_preset(_db_path(), owner_id=req.owner_id, profile=profile)
    except (PresetLimitError, PresetNameConflictError) as exc:
        raise HTTPException(status_code=409, detail=exc.to_unknown()) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": "PRESET_INVALID", "message": str(exc)}) from exc


@app.delete("/presets/{preset_id}")
def preset_delete(preset_id: str, owner_id: str):
    if not delete_preset(_db_path(), owner_id=owner_id, preset_id=preset_id):
        error = PresetNotFoundError(owner_id, "Cost preset not found.", preset_id=preset_id)
        raise HTTPException(status_code=404, detail=error.to_unknown())
    return {"owner_id": owner_id, "preset_id": preset_id, "deleted": True}

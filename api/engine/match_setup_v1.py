from __future__ import annotations

from typing import Any, Dict

from api.engine.constants import DEFAULT_CYCLE_BREAKPOINT
from api.engine.cost_aggregate_v1 import coerce_cycle_breakpoint
from api.engine.featured_validate_v1 import (
    featured_rule_sets,
    normalize_featured_entries,
    validate_featured_entries,
)
from api.engine.utils import nonempty_str
from catalog.snapshot import CatalogSnapshot


MATCH_SETUP_VERSION = "match_setup_v1"


def build_match_setup(
    featured: Any,
    cost_profile_id: Any = None,
    cycle_breakpoint: Any = DEFAULT_CYCLE_BREAKPOINT,
    catalog: CatalogSnapshot | None = None,
) -> Dict[str, Any]:
    """Gate session start on a valid featured list.

    The returned ``setup`` is opaque configuration for the draft flow; it is
    ``None`` whenever any featured entry is invalid.
    """

    entries = normalize_featured_entries(featured)
    validation = validate_featured_entries(entries, catalog=catalog)

    if validation["status"] != "OK":
        return {
            "version": MATCH_SETUP_VERSION,
            "status": "INVALID",
            "invalid_indices": validation["invalid_indices"],
            "violations": validation["violations"],
            "setup": None,
        }

    return {
        "version": MATCH_SETUP_VERSION,
        "status": "OK",
        "invalid_indices": [],
        "violations": [],
        "setup": {
            "featured": [entry.to_payload() for entry in entries],
            "cost_profile_id": nonempty_str(cost_profile_id),
            "cycle_breakpoint": coerce_cycle_breakpoint(cycle_breakpoint),
            "rules": featured_rule_sets(entries),
        },
    }

from __future__ import annotations

import argparse
import hashlib
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import requests
from tqdm import tqdm

from catalog.adapter import catalog_from_payloads
from catalog.db import SCHEMA_PATH, apply_schema, write_catalog_snapshot

logger = logging.getLogger(__name__)

TOOL_VERSION = "0.2.0"
DEFAULT_CHARACTERS_PATH = "/api/characters?cycle=0"
DEFAULT_EQUIPMENT_PATH = "/api/cerydra/cone-balance"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def connect(db_path: Path) -> sqlite3.Connection:
    con = sqlite3.connect(str(db_path))
    con.execute("PRAGMA journal_mode=WAL;")
    return con


def fetch_json(url: str, desc: str, timeout: int = 60) -> bytes:
    """Download ``url`` with a progress bar and return the raw body."""
    with requests.get(url, stream=True, timeout=timeout) as r:
        r.raise_for_status()
        total = int(r.headers.get("Content-Length", "0")) or None
        chunks = []
        with tqdm(total=total, unit="B", unit_scale=True, desc=desc) as pbar:
            for chunk in r.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                chunks.append(chunk)
                pbar.update(len(chunk))
    return b"".join(chunks)


def decode_payload(raw: bytes, label: str) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise RuntimeError(f"{label} payload is not valid JSON") from exc


def build_manifest(snapshot_id: str, sources: Dict[str, str], hashes: Dict[str, str], counts: Dict[str, int]) -> Dict[str, Any]:
    return {
        "snapshot_id": snapshot_id,
        "created_at": utc_now_iso(),
        "sources": sources,
        "download_sha256": hashes,
        "counts": counts,
        "tool": "update_catalog_snapshot.py",
        "tool_version": TOOL_VERSION,
    }


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Fetch the character and light cone catalog into a new SQLite snapshot.")
    ap.add_argument("--db", required=True, help="Path to SQLite DB (e.g., data/cost_engine.sqlite)")
    ap.add_argument("--schema", default=str(SCHEMA_PATH), help="Path to schema.sql")
    ap.add_argument("--base-url", required=True, help="Catalog service base URL")
    ap.add_argument("--characters-path", default=DEFAULT_CHARACTERS_PATH)
    ap.add_argument("--equipment-path", default=DEFAULT_EQUIPMENT_PATH)
    ap.add_argument("--out", default=None, help="Optional directory to keep the raw JSON downloads.")
    ap.add_argument("--snapshot-id", default=None, help="Optional snapshot id; default uses UTC timestamp.")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    db_path = Path(args.db)
    schema_path = Path(args.schema)
    base_url = args.base_url.rstrip("/")
    snapshot_id = args.snapshot_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

    sources = {
        "characters": f"{base_url}{args.characters_path}",
        "equipment": f"{base_url}{args.equipment_path}",
    }

    logger.info(f"[1/4] Fetching catalog for snapshot_id={snapshot_id}")
    characters_raw = fetch_json(sources["characters"], desc="Characters")
    equipment_raw = fetch_json(sources["equipment"], desc="Light cones")

    if args.out:
        out_dir = Path(args.out)
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / f"characters_{snapshot_id}.json").write_bytes(characters_raw)
        (out_dir / f"equipment_{snapshot_id}.json").write_bytes(equipment_raw)

    logger.info("[2/4] Normalizing payloads...")
    catalog = catalog_from_payloads(
        snapshot_id,
        decode_payload(characters_raw, "characters"),
        decode_payload(equipment_raw, "equipment"),
    )
    if not catalog.characters:
        logger.warning("Catalog service returned no characters")
    if not catalog.equipment:
        logger.warning("Catalog service returned no light cones")

    manifest = build_manifest(
        snapshot_id,
        sources=sources,
        hashes={
            "characters": sha256_bytes(characters_raw),
            "equipment": sha256_bytes(equipment_raw),
        },
        counts={
            "characters": len(catalog.characters),
            "equipment": len(catalog.equipment),
        },
    )

    logger.info(f"[3/4] Opening DB: {db_path}")
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = connect(db_path)
    try:
        apply_schema(con, schema_path)
        logger.info("[4/4] Writing snapshot...")
        write_catalog_snapshot(
            con,
            catalog,
            created_at=manifest["created_at"],
            source="catalog_service",
            source_uri=base_url,
            manifest_json=json.dumps(manifest, ensure_ascii=False, sort_keys=True),
        )
    finally:
        con.close()

    logger.info(
        f"DONE snapshot_id={snapshot_id} characters={len(catalog.characters)} "
        f"equipment={len(catalog.equipment)} db={db_path}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

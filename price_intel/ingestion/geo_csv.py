"""Seed loader for the ZIP -> county reference table (Census/HUD crosswalk CSV)."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from price_intel.core.db import upsert
from price_intel.core.logging import get_logger
from price_intel.models.geo import ZipToCounty

log = get_logger("ingestion.geo_csv")

REQUIRED_COLUMNS = {"zip_code", "county_name", "state_code"}


def _clean_row(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    zip_code = (row.get("zip_code") or "").strip()
    county_name = (row.get("county_name") or "").strip()
    state_code = (row.get("state_code") or "").strip().upper()
    if not zip_code.isdigit() or len(zip_code) > 5 or not county_name or len(state_code) != 2:
        return None
    return {
        "zip_code": zip_code.zfill(5),
        "county_name": county_name,
        "state_code": state_code,
        "city": (row.get("city") or "").strip() or None,
    }


def load_zip_to_county_csv(db: Session, file_path: str | Path) -> int:
    """Upsert rows from a CSV with columns zip_code,county_name,state_code[,city].

    Malformed rows are skipped with a warning. Returns the number of rows written.
    """
    path = Path(file_path)
    if not path.exists():
        log.warning(f"ZIP/county CSV not found: {path}")
        return 0

    rows: Dict[str, Dict[str, Any]] = {}
    skipped = 0
    with path.open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = REQUIRED_COLUMNS - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"{path.name} is missing columns: {', '.join(sorted(missing))}")
        for line_no, row in enumerate(reader, start=2):
            cleaned = _clean_row(row)
            if cleaned is None:
                skipped += 1
                log.warning(f"Skipping malformed row {line_no} in {path.name}: {row}")
                continue
            # Later rows win for duplicate ZIPs
            rows[cleaned["zip_code"]] = cleaned

    batch: List[Dict[str, Any]] = list(rows.values())
    try:
        upsert(
            db,
            ZipToCounty,
            batch,
            conflict_columns=["zip_code"],
            update_columns=["county_name", "state_code", "city"],
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info(f"Loaded {len(batch)} ZIP/county rows from {path.name} (skipped={skipped})")
    return len(batch)

"""Read-only ZIP -> county lookup used by the aggregators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from price_intel.models.geo import ZipToCounty


@dataclass(frozen=True)
class CountyRef:
    county_name: str
    state_code: str
    city: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.county_name, self.state_code)

    @property
    def label(self) -> str:
        return f"{self.county_name}, {self.state_code}"


class ZipCountyMap:
    """In-memory snapshot of ``zip_to_county`` taken once per batch."""

    def __init__(self, entries: Dict[str, CountyRef]):
        self._entries = dict(entries)

    @classmethod
    def from_db(cls, db: Session) -> "ZipCountyMap":
        rows = db.execute(select(ZipToCounty)).scalars().all()
        return cls.from_rows((r.zip_code, r.county_name, r.state_code, r.city) for r in rows)

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[str, str, str, Optional[str]]]) -> "ZipCountyMap":
        entries = {}
        for zip_code, county_name, state_code, city in rows:
            entries[str(zip_code).zfill(5)] = CountyRef(county_name, state_code.upper(), city)
        return cls(entries)

    def lookup(self, zip_code: str) -> Optional[CountyRef]:
        return self._entries.get(str(zip_code).strip().zfill(5))

    def region_for(self, zip_codes: Iterable[str]) -> Tuple[Optional[str], List[str]]:
        """Most common county label and the sorted distinct cities among ``zip_codes``."""
        counts: Dict[str, int] = {}
        cities = set()
        for zip_code in zip_codes:
            ref = self.lookup(zip_code)
            if ref is None:
                continue
            counts[ref.label] = counts.get(ref.label, 0) + 1
            if ref.city:
                cities.add(ref.city)
        region = min(counts, key=lambda label: (-counts[label], label)) if counts else None
        return region, sorted(cities)

    def __len__(self) -> int:
        return len(self._entries)

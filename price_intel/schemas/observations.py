"""Input schemas for price observations and scraper fetch results."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ObservationIn(BaseModel):
    """A price reading about to enter the observation store.

    Range and enum checks are performed by ``ObservationService.ingest`` so
    that rejections surface as ``ObservationValidationError`` rather than a
    pydantic error.
    """

    supplier_id: uuid.UUID
    price_per_unit: Decimal
    source_type: str
    fuel_type: str = "heating_oil"
    min_quantity: Optional[int] = None
    source_url: Optional[str] = None
    observed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None


class FetchResult(BaseModel):
    """Outcome of one scrape attempt, as handed over by the scraper."""

    supplier_id: uuid.UUID
    success: bool
    price: Optional[Decimal] = None
    source_url: Optional[str] = None
    fuel_type: str = "heating_oil"
    min_quantity: Optional[int] = Field(default=None, ge=0)
    observed_at: Optional[datetime] = None
    error: Optional[str] = None

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    database: str
    last_run_status: str | None


class RunOut(BaseModel):
    run_id: str
    job_name: str
    fuel_type: Optional[str] = None
    status: str
    updated: int
    skipped: int
    failed: int
    error_message: str | None = None
    started_at: datetime
    ended_at: datetime | None

    class Config:
        from_attributes = True


class WeeklyPointOut(BaseModel):
    week_start: date
    median_price: Decimal
    supplier_count: int
    data_points: int

    class Config:
        from_attributes = True


class ZipStatsOut(BaseModel):
    zip_prefix: str
    fuel_type: str
    region_name: Optional[str] = None
    cities: list[str] = []
    median_price: Decimal
    min_price: Decimal
    max_price: Decimal
    supplier_count: int
    data_points: int
    weeks_available: int
    percent_change_6w: Optional[Decimal] = None
    first_week_price: Optional[Decimal] = None
    latest_week_price: Optional[Decimal] = None
    data_quality_score: Decimal
    last_scrape_at: Optional[datetime] = None
    computed_at: datetime
    history: list[WeeklyPointOut] = []

    class Config:
        from_attributes = True


class CountyStatsOut(BaseModel):
    county_name: str
    state_code: str
    fuel_type: str
    median_price: Decimal
    min_price: Decimal
    max_price: Decimal
    avg_price: Decimal
    supplier_count: int
    data_points: int
    zip_prefixes: list[str] = []
    zip_count: int
    weeks_available: int
    percent_change_6w: Optional[Decimal] = None
    first_week_price: Optional[Decimal] = None
    latest_week_price: Optional[Decimal] = None
    data_quality_score: Decimal
    last_scrape_at: Optional[datetime] = None
    computed_at: datetime

    class Config:
        from_attributes = True


class ScrapeHealthResponse(BaseModel):
    active: int
    cooldown: int
    disabled: int
    with_recent_failures: int


class PipelineTriggerResponse(BaseModel):
    success: bool
    status: str
    result: dict | None = None
    error: str | None = None

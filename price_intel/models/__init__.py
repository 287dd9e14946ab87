from price_intel.models.base import Base
from price_intel.models.supplier import Supplier, ScrapeStatus
from price_intel.models.observation import PriceObservation, SourceType, FuelType
from price_intel.models.stats import ZipCurrentStats, ZipWeeklyStats, CountyCurrentStats, CountyWeeklyStats
from price_intel.models.geo import ZipToCounty
from price_intel.models.runs import PipelineRun

__all__ = [
    "Base",
    "Supplier",
    "ScrapeStatus",
    "PriceObservation",
    "SourceType",
    "FuelType",
    "ZipCurrentStats",
    "ZipWeeklyStats",
    "CountyCurrentStats",
    "CountyWeeklyStats",
    "ZipToCounty",
    "PipelineRun",
]

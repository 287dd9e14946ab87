from price_intel.services.county_aggregator import CountyAggregator
from price_intel.services.data_service import DataService
from price_intel.services.observation_service import ObservationService
from price_intel.services.pipeline_service import PipelineResult, PipelineService
from price_intel.services.scrape_health import ScrapeHealthTracker
from price_intel.services.validation_service import ValidationService
from price_intel.services.zip_aggregator import ZipAggregator

__all__ = [
    "CountyAggregator",
    "DataService",
    "ObservationService",
    "PipelineResult",
    "PipelineService",
    "ScrapeHealthTracker",
    "ValidationService",
    "ZipAggregator",
]

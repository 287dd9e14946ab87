from price_intel.api.routes.health import router as health_router
from price_intel.api.routes.pipeline import router as pipeline_router
from price_intel.api.routes.stats import router as stats_router

__all__ = ["health_router", "pipeline_router", "stats_router"]

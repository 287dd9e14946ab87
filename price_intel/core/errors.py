"""Error taxonomy for the price intelligence pipeline.

Validation and partition errors are local: they are reported per record or
per partition and the batch continues. Only ``FatalInfrastructureError``
propagates to the top of a run and terminates it.
"""

from __future__ import annotations

from datetime import date


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ObservationValidationError(PipelineError):
    """A malformed or out-of-range price observation, rejected at ingestion."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class SupplierNotFound(PipelineError):
    def __init__(self, supplier_id):
        super().__init__(f"Supplier {supplier_id} not found")
        self.supplier_id = supplier_id


class PartitionComputeError(PipelineError):
    """Aggregation of one ZIP prefix or county failed; the batch continues."""

    def __init__(self, partition: str, reason: str):
        super().__init__(f"{partition}: {reason}")
        self.partition = partition
        self.reason = reason


class NoValidObservations(PartitionComputeError):
    """The partition has coverage but no observation is currently valid."""

    def __init__(self, partition: str):
        super().__init__(partition, "no_valid_observations")


class ReferenceDataMissing(PipelineError):
    """A served ZIP has no county mapping; excluded from county rollups only."""

    def __init__(self, zip_code: str):
        super().__init__(f"No county mapping for ZIP {zip_code}")
        self.zip_code = zip_code


class ImmutableHistoryError(PipelineError):
    """Raised when code tries to rewrite a weekly row of a completed week."""

    def __init__(self, week_start: date, current_week: date):
        super().__init__(
            f"Weekly stats for {week_start.isoformat()} are immutable "
            f"(current week starts {current_week.isoformat()})"
        )
        self.week_start = week_start
        self.current_week = current_week


class FatalInfrastructureError(PipelineError):
    """The backing store is unreachable; the whole batch is aborted."""

"""Supplier directory entry with embedded scrape-health attributes."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from price_intel.models.base import GUID, JSONType, Base, UTCDateTime


class ScrapeStatus(str, Enum):
    ACTIVE = "active"
    COOLDOWN = "cooldown"
    DISABLED = "disabled"


class Supplier(Base):
    """A fuel supplier and the ZIP codes it delivers to.

    The ``scrape_*`` columns are owned by the scrape health tracker and are
    only changed by fetch outcomes or an explicit admin re-enable.
    """

    __tablename__ = "suppliers"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # 5-digit ZIP codes as strings, e.g. ["10501", "10502"]
    postal_codes_served: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    scrape_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ScrapeStatus.ACTIVE.value,
        index=True,
    )
    consecutive_scrape_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_scrape_failure_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    scrape_cooldown_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
    )

"""ZIP → county reference data (imported from Census/HUD, read-only to the pipeline)."""

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from price_intel.models.base import Base


class ZipToCounty(Base):
    __tablename__ = "zip_to_county"

    zip_code: Mapped[str] = mapped_column(String(5), primary_key=True)
    county_name: Mapped[str] = mapped_column(String(100), nullable=False)
    state_code: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (Index("ix_zip_to_county_county", "county_name", "state_code"),)

"""
Pydantic schemas for the sync API
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class BackfillRequest(BaseModel):
    """Request body for a manual backfill run"""
    entity_types: Optional[List[str]] = Field(
        None, description="Entity types to copy; defaults to BACKFILL_ENTITY_TYPES"
    )


class ReconcileRequest(BaseModel):
    """
    Request body for a manual reconciliation run.

    Either year + month (calendar month in the shop timezone) or an
    explicit start/end pair.
    """
    entity_type: str = Field("orders", description="Windowed entity type to reconcile")
    year: Optional[int] = Field(None, ge=2000, le=2100)
    month: Optional[int] = Field(None, ge=1, le=12)
    start: Optional[datetime] = Field(None, description="Window start (timezone-aware)")
    end: Optional[datetime] = Field(None, description="Window end (timezone-aware)")
    apply: bool = Field(True, description="Apply corrections; false for a dry run")

    @model_validator(mode="after")
    def check_window(self):
        has_month = self.year is not None and self.month is not None
        has_range = self.start is not None and self.end is not None
        if has_month == has_range:
            raise ValueError("Provide either year and month, or start and end")
        return self


class BridgeStatusResponse(BaseModel):
    """Bridge session state with per-collection counters"""
    running: bool
    session_id: Optional[str] = None
    collections: dict

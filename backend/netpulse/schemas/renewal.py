"""Schemas for the renewal batch."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RenewalRunRequest(BaseModel):
    reference_time: Optional[datetime] = Field(
        default=None, description="Evaluate expiry against this instant instead of now"
    )
    client_ids: Optional[List[str]] = Field(
        default=None, description="Restrict the batch to these clients"
    )


class RenewalSummaryRead(BaseModel):
    processed: int = Field(..., ge=0)
    renewed: int = Field(..., ge=0)
    suspended: int = Field(..., ge=0)
    warned: int = Field(..., ge=0)
    skipped: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)

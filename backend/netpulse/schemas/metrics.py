from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SchedulerJobHealth(BaseModel):
    enabled: bool
    last_tick: datetime | None = None
    last_summary: Optional[Dict[str, int]] = None
    recent_errors: List[str] = Field(default_factory=list)


class SchedulerHealthResponse(BaseModel):
    jobs: Dict[str, SchedulerJobHealth] = Field(default_factory=dict)

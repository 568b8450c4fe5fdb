"""
eagate/models/usage.py

UsageRecord: free-tier usage count for one identity.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from eagate.models.identity import Identity


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity: Identity
    count: int = Field(default=0, ge=0)
    last_request_at: Optional[datetime] = None

"""
eagate/models/gate.py

GateDecision: outcome of the pure authorization rule.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class GateStatus(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class GateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: GateStatus
    reason: Optional[str] = None  # "limit_reached" on DENY
    count: int
    limit: int
    has_paid: bool

    @property
    def allowed(self) -> bool:
        return self.status == GateStatus.ALLOW

    @property
    def remaining_free(self) -> int:
        return max(0, self.limit - self.count)

"""
eagate/models/identity.py

Caller identity for a single request.

Anonymous callers are keyed by an opaque device token, authenticated
callers by their verified email. The two key spaces never overlap.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict


class IdentityKind(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: IdentityKind
    key: str  # device token or lowercased email

    @property
    def storage_key(self) -> str:
        prefix = "anon" if self.kind == IdentityKind.ANONYMOUS else "email"
        return f"{prefix}:{self.key}"

    @property
    def is_authenticated(self) -> bool:
        return self.kind == IdentityKind.AUTHENTICATED

    @property
    def email(self):
        return self.key if self.is_authenticated else None

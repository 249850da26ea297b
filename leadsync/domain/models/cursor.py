"""
Poller Cursor Models
Durable per-tenant progress markers for the form submission poller
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime


class TenantCursor(BaseModel):
    """
    Last (updated_at, id) pair fully enqueued for a tenant.

    Cursors compare lexicographically: updated_at first, id as tie-breaker.
    A cursor with only last_seen_updated_at comes from a legacy state file.
    """
    tenant_id: str
    last_seen_updated_at: Optional[datetime] = None
    last_seen_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.last_seen_updated_at is None

    @property
    def is_compound(self) -> bool:
        return self.last_seen_updated_at is not None and self.last_seen_id is not None

    def key(self) -> tuple:
        return (self.last_seen_updated_at, self.last_seen_id or "")

    def __ge__(self, other: "TenantCursor") -> bool:
        if other.is_empty:
            return True
        if self.is_empty:
            return False
        return self.key() >= other.key()

    def __gt__(self, other: "TenantCursor") -> bool:
        if other.is_empty:
            return not self.is_empty
        if self.is_empty:
            return False
        return self.key() > other.key()


class PollerState(BaseModel):
    """Everything the poller persists between runs"""
    last_run_at: Optional[datetime] = None
    total_submissions_processed: int = 0
    total_errors: int = 0
    last_error: Optional[str] = None
    tenant_cursors: Dict[str, TenantCursor] = Field(default_factory=dict)

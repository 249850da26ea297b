"""
Event Source Interfaces
Per-tenant form submission stores and the registry that lists them
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from leadsync.domain.models.cursor import TenantCursor
from leadsync.domain.models.event import FormSubmissionEvent


@dataclass
class TenantConfig:
    """Connection details for one tenant's hosted project."""
    tenant_id: str
    url: str
    anon_key: str
    bucket: str = "receipts"


class EventSource(ABC):
    """Abstract store of form submission rows for one tenant"""

    @abstractmethod
    async def fetch_since(
        self,
        cursor: Optional[TenantCursor],
        limit: int = 50
    ) -> List[FormSubmissionEvent]:
        """
        Return up to `limit` rows strictly after the cursor.

        Rows are ordered by (updated_at ASC, id ASC). With a compound cursor
        the filter is `updated_at > X OR (updated_at = X AND id > Y)`; with a
        timestamp-only cursor it is `updated_at >= X`; without a cursor the
        first page of the table is returned.
        """
        pass


class TenantConfigSource(ABC):
    """Abstract registry of tenants that have a configured event source"""

    @abstractmethod
    async def list_tenants(self) -> List[TenantConfig]:
        """Return every tenant that should be polled"""
        pass

"""
Supabase Lead Repository
Leads and board labels stored in the master project
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from leadsync.domain.interfaces.lead_repository import LeadRepository
from leadsync.domain.models.lead import Label, Lead
from leadsync.utils.tenant_filter import apply_tenant_filter

logger = logging.getLogger(__name__)


def _to_row(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in values.items()
    }


class SupabaseLeadRepository(LeadRepository):
    """
    Leads keyed by (tenant_id, canonical_key).

    Tables:
    - leads: one row per lead, unique on (tenant_id, canonical_key)
    - whatsapp_labels: board labels, tenant_id NULL for shared labels

    A concurrent insert from another process hits the unique constraint and
    raises; the sync job is retried and then takes the update path.
    """

    LEADS_TABLE = "leads"
    LABELS_TABLE = "whatsapp_labels"

    def __init__(self, client: Any):
        self._client = client

    async def find_by_canonical_key(self, tenant_id: str, canonical_key: str) -> Optional[Lead]:
        query = self._client.table(self.LEADS_TABLE).select("*")
        query = apply_tenant_filter(query, tenant_id).eq("canonical_key", canonical_key).limit(1)

        response = await asyncio.to_thread(query.execute)
        if not response.data:
            return None
        return Lead.model_validate(response.data[0])

    async def insert(self, lead: Lead) -> Lead:
        row = lead.model_dump(mode="json", exclude_none=True)
        row.pop("id", None)

        response = await asyncio.to_thread(
            self._client.table(self.LEADS_TABLE).insert(row).execute
        )
        if not response.data:
            raise RuntimeError(f"Insert into {self.LEADS_TABLE} returned no row")

        return Lead.model_validate(response.data[0])

    async def update(self, tenant_id: str, lead_id: str, changes: Dict[str, Any]) -> Lead:
        query = self._client.table(self.LEADS_TABLE).update(_to_row(changes)).eq("id", lead_id)
        query = apply_tenant_filter(query, tenant_id)

        response = await asyncio.to_thread(query.execute)
        if not response.data:
            raise LookupError(f"Lead {lead_id} not found for tenant {tenant_id}")

        return Lead.model_validate(response.data[0])

    async def list_active_labels(self, tenant_id: str) -> List[Label]:
        query = self._client.table(self.LABELS_TABLE).select("*")
        query = apply_tenant_filter(query, tenant_id, include_global=True).eq("active", True)

        response = await asyncio.to_thread(query.execute)
        return [Label.model_validate(row) for row in response.data or []]

"""
Supabase Event Source
Reads a tenant's form_submissions table through its own Supabase project
"""
import asyncio
import logging
from typing import Any, List, Optional

from leadsync.domain.errors import EventSourceError
from leadsync.domain.interfaces.event_source import EventSource, TenantConfig
from leadsync.domain.models.cursor import TenantCursor
from leadsync.domain.models.event import FormSubmissionEvent

try:
    from supabase import create_client, Client
except ImportError as e:
    raise ImportError(f"Required dependency not installed: {e}")

logger = logging.getLogger(__name__)


def _quote(value: str) -> str:
    """Quote a PostgREST filter value; timestamps carry ':' and '+'."""
    return '"' + str(value).replace('"', '\\"') + '"'


def build_cursor_filter(cursor: TenantCursor) -> str:
    """PostgREST `or` expression selecting rows strictly after a compound cursor."""
    seen_at = _quote(cursor.last_seen_updated_at.isoformat())
    seen_id = _quote(cursor.last_seen_id)
    return f"updated_at.gt.{seen_at},and(updated_at.eq.{seen_at},id.gt.{seen_id})"


class SupabaseEventSource(EventSource):
    """
    Form submissions stored in one tenant's Supabase project.

    Table: form_submissions, read with the tenant's anon key.
    """

    TABLE = "form_submissions"

    def __init__(self, tenant_id: str, client: Any):
        self.tenant_id = tenant_id
        self._client = client

    @classmethod
    def from_tenant_config(cls, config: TenantConfig) -> "SupabaseEventSource":
        client: Client = create_client(config.url, config.anon_key)
        return cls(config.tenant_id, client)

    def _build_query(self, cursor: Optional[TenantCursor], limit: int) -> Any:
        query = self._client.table(self.TABLE).select("*")

        if cursor is not None and cursor.is_compound:
            query = query.or_(build_cursor_filter(cursor))
        elif cursor is not None and not cursor.is_empty:
            # Timestamp-only cursor from an old state file
            query = query.gte("updated_at", cursor.last_seen_updated_at.isoformat())

        return query.order("updated_at").order("id").limit(limit)

    async def fetch_since(
        self,
        cursor: Optional[TenantCursor],
        limit: int = 50
    ) -> List[FormSubmissionEvent]:
        query = self._build_query(cursor, limit)

        try:
            response = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(f"[EventSource] Query failed for tenant {self.tenant_id}: {e}")
            raise EventSourceError(f"form_submissions query failed for tenant {self.tenant_id}: {e}") from e

        events = []
        for row in response.data or []:
            try:
                events.append(FormSubmissionEvent.from_row(row, self.tenant_id))
            except (KeyError, ValueError) as e:
                # Skipped rather than raised, otherwise the tenant's cursor never moves past it
                logger.error(
                    f"[EventSource] Skipping malformed form_submissions row {row.get('id')} "
                    f"for tenant {self.tenant_id}: {e}"
                )

        return events

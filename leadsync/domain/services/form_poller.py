"""
Form Submission Poller
Per-tenant incremental scan of form submissions into sync jobs
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from leadsync.core.config import PollerSettings
from leadsync.domain.errors import CursorStoreError
from leadsync.domain.interfaces.event_source import EventSource, TenantConfig, TenantConfigSource
from leadsync.domain.models.cursor import PollerState, TenantCursor
from leadsync.domain.models.event import FormSubmissionEvent
from leadsync.domain.models.job import JobType, SyncFormSubmissionPayload
from leadsync.domain.services.job_queue import JobQueue
from leadsync.infrastructure.storage.cursor_store import FileCursorStore

logger = logging.getLogger(__name__)

EventSourceFactory = Callable[[TenantConfig], EventSource]

# Per-tenant count reported for a tenant whose sweep failed
TENANT_FAILED = -1


@dataclass
class TenantPollError:
    tenant_id: str
    message: str


@dataclass
class PollResult:
    """Outcome of one sweep across tenants."""
    success: bool = True
    processed_count: int = 0
    per_tenant_counts: Dict[str, int] = field(default_factory=dict)
    errors: List[TenantPollError] = field(default_factory=list)
    error: Optional[str] = None


class FormSubmissionPoller:
    """
    Discovers new or changed submissions per tenant and enqueues sync jobs.

    Follows updated_at rather than created_at: the form app rewrites the same
    row as the respondent moves from opened to started to completed, and
    every transition has to reach the lead.

    The cursor advances only after the whole page is enqueued. A failure
    mid-page leaves it untouched, so the next sweep re-enqueues the page;
    sync handlers are idempotent, so the duplicates are harmless.

    Not a scheduler: call poll_once() on an interval.
    """

    def __init__(
        self,
        tenant_source: TenantConfigSource,
        event_source_factory: EventSourceFactory,
        queue: JobQueue,
        cursor_store: FileCursorStore,
        settings: Optional[PollerSettings] = None,
        job_max_attempts: int = 3,
        job_ttl: int = 3600,
    ):
        self.tenant_source = tenant_source
        self.event_source_factory = event_source_factory
        self.queue = queue
        self.cursor_store = cursor_store
        self.settings = settings or PollerSettings()
        self.job_max_attempts = job_max_attempts
        self.job_ttl = job_ttl

    async def poll_once(self) -> PollResult:
        """Run one polling round for every configured tenant."""
        result = PollResult()
        logger.info("[FormPoller] Starting submission polling...")

        try:
            tenants = await self.tenant_source.list_tenants()
        except Exception as e:
            logger.error(f"[FormPoller] Failed to load tenant configurations: {e}", exc_info=True)
            result.success = False
            result.error = str(e)
            self._record_run(processed=0, errors=1, last_error=str(e))
            return result

        if not tenants:
            logger.info("[FormPoller] No tenant event sources configured - skipping polling")
            self._record_run(processed=0, errors=0, last_error=None)
            return result

        logger.info(f"[FormPoller] Found {len(tenants)} configured tenant(s)")

        for tenant in tenants:
            try:
                count = await self._poll_tenant(tenant)
                result.per_tenant_counts[tenant.tenant_id] = count
                result.processed_count += count
            except Exception as e:
                logger.error(f"[FormPoller] Error processing tenant {tenant.tenant_id}: {e}", exc_info=True)
                result.per_tenant_counts[tenant.tenant_id] = TENANT_FAILED
                result.errors.append(TenantPollError(tenant_id=tenant.tenant_id, message=str(e)))

        last_error = result.errors[-1].message if result.errors else None
        self._record_run(
            processed=result.processed_count,
            errors=len(result.errors),
            last_error=last_error,
        )

        logger.info(
            f"[FormPoller] Polling finished: {result.processed_count} submissions enqueued "
            f"from {len(tenants)} tenant(s), {len(result.errors)} tenant error(s)"
        )
        return result

    async def _poll_tenant(self, tenant: TenantConfig) -> int:
        """
        Enqueue one page of a tenant's submissions.

        Raises on any failure before the cursor moves.
        """
        cursor = self.cursor_store.get_cursor(tenant.tenant_id)
        source = self.event_source_factory(tenant)

        events = await source.fetch_since(cursor, limit=self.settings.page_size)
        logger.info(f"[FormPoller] Tenant {tenant.tenant_id}: {len(events)} new or updated submissions")

        if not events:
            return 0

        for event in events:
            await self._enqueue(event, tenant.tenant_id)

        # Source order is authoritative for ties; ids need not sort as strings
        last = events[-1]
        new_cursor = TenantCursor(
            tenant_id=tenant.tenant_id,
            last_seen_updated_at=last.updated_at,
            last_seen_id=last.id,
        )
        if cursor is None or cursor.is_empty or new_cursor.last_seen_updated_at >= cursor.last_seen_updated_at:
            self.cursor_store.save_cursor(new_cursor)
        else:
            logger.warning(
                f"[FormPoller] Tenant {tenant.tenant_id}: page ended before the stored cursor, "
                f"keeping {cursor.last_seen_updated_at}/{cursor.last_seen_id}"
            )

        logger.info(f"[FormPoller] Tenant {tenant.tenant_id}: {len(events)} submissions enqueued")
        return len(events)

    async def _enqueue(self, event: FormSubmissionEvent, tenant_id: str) -> str:
        """Enqueue a sync job carrying the full submission."""
        event = event.model_copy(update={"tenant_id": tenant_id})
        try:
            job_id = await self.queue.add(
                JobType.SYNC_FORM_SUBMISSION,
                SyncFormSubmissionPayload(event=event),
                max_attempts=self.job_max_attempts,
                ttl=self.job_ttl,
            )
        except Exception as e:
            logger.error(f"[FormPoller] Failed to enqueue submission {event.id}: {e}")
            raise

        logger.debug(
            f"[FormPoller] Submission {event.id} enqueued (tenant: {tenant_id}, "
            f"cpf: {'yes' if event.contact_cpf else 'no'})"
        )
        return job_id

    def _record_run(self, processed: int, errors: int, last_error: Optional[str]) -> None:
        try:
            self.cursor_store.record_run(processed=processed, errors=errors, last_error=last_error)
        except CursorStoreError as e:
            logger.error(f"[FormPoller] Failed to save run statistics: {e}")

    def get_state(self) -> PollerState:
        return self.cursor_store.state.model_copy(deep=True)

    def reset_cursor(self, tenant_id: Optional[str] = None) -> None:
        """Forget cursors so the next poll re-reads from the start."""
        self.cursor_store.reset(tenant_id)
        logger.info(
            f"[FormPoller] Cursor reset{' for tenant ' + tenant_id if tenant_id else ''} - "
            f"next poll processes all submissions"
        )

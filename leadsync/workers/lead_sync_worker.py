"""
Lead Sync Worker
Background process that polls tenant form submissions and runs the job queue.

Run as separate process:
    leadsync-worker
    python -m leadsync.workers.lead_sync_worker
"""
import asyncio
import logging
import signal
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

try:
    from supabase import create_client
except ImportError as e:
    raise ImportError(f"Required dependency not installed: {e}")

from leadsync.core.config import ConfigManager, PollerSettings, QueueSettings, Settings
from leadsync.domain.interfaces.compliance_provider import ComplianceChecker
from leadsync.domain.interfaces.event_source import TenantConfig
from leadsync.domain.interfaces.kv_store import KeyValueStore
from leadsync.domain.services.form_poller import FormSubmissionPoller
from leadsync.domain.services.job_queue import JobQueue
from leadsync.domain.services.lead_sync import LeadSyncService
from leadsync.infrastructure.compliance.http_checker import HttpComplianceChecker
from leadsync.infrastructure.security.credential_cipher import CredentialCipher
from leadsync.infrastructure.storage.cursor_store import FileCursorStore
from leadsync.infrastructure.storage.memory_store import InMemoryKeyValueStore
from leadsync.infrastructure.storage.redis_store import RedisKeyValueStore
from leadsync.infrastructure.supabase.event_source import SupabaseEventSource
from leadsync.infrastructure.supabase.lead_repository import SupabaseLeadRepository
from leadsync.infrastructure.supabase.tenant_config import SupabaseTenantConfigSource
from leadsync.workers.handlers import LeadSyncJobHandlers

logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class LeadSyncWorker:
    """
    Background worker for form submission -> lead reconciliation.

    Responsibilities:
    - Poll every tenant's form submissions on an interval
    - Run the job queue that syncs submissions into leads
    - Stop cleanly on SIGTERM/SIGINT, letting in-flight jobs finish
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(self, settings: Optional[Settings] = None, config: Optional[ConfigManager] = None):
        self.settings = settings or Settings()
        self.config = config or ConfigManager(env=self.settings.environment)
        self.queue_settings = QueueSettings.from_config(self.config)
        self.poller_settings = PollerSettings.from_config(self.config)

        self.running = False
        self._stop_event = asyncio.Event()
        self._queue_task: Optional[asyncio.Task] = None

        self.store: Optional[KeyValueStore] = None
        self.queue: Optional[JobQueue] = None
        self.poller: Optional[FormSubmissionPoller] = None
        self.sync_service: Optional[LeadSyncService] = None
        self.compliance_checker: Optional[ComplianceChecker] = None

        # Stats
        self._polls_completed = 0
        self._polls_failed = 0

    async def _create_store(self) -> KeyValueStore:
        if not self.settings.redis_url:
            logger.warning("REDIS_URL not set - using in-memory queue store (jobs are lost on restart)")
            return InMemoryKeyValueStore()

        store = RedisKeyValueStore(redis_url=self.settings.redis_url)
        await store.initialize()
        return store

    def _fallback_tenant(self) -> Optional[TenantConfig]:
        if not self.settings.forms_supabase_url or not self.settings.forms_supabase_anon_key:
            return None
        return TenantConfig(
            tenant_id=self.poller_settings.default_tenant_id,
            url=self.settings.forms_supabase_url,
            anon_key=self.settings.forms_supabase_anon_key,
        )

    async def initialize(self) -> None:
        """Initialize connections and services."""
        logger.info("Initializing Lead Sync Worker...")

        if not self.settings.supabase_url or not self.settings.supabase_service_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        master = create_client(self.settings.supabase_url, self.settings.supabase_service_key)

        self.store = await self._create_store()
        self.queue = JobQueue(self.store, self.queue_settings)

        self.compliance_checker = HttpComplianceChecker(
            base_url=self.settings.compliance_api_url,
            api_token=self.settings.compliance_api_token,
            timeout=float(self.config.get("compliance.timeout_seconds", 30)),
        )

        self.sync_service = LeadSyncService(
            repository=SupabaseLeadRepository(master),
            compliance_queue=self.queue,
            compliance_max_attempts=int(self.config.get("compliance.max_attempts", 2)),
        )
        LeadSyncJobHandlers(
            self.sync_service,
            self.compliance_checker,
            created_by=self.config.get("compliance.created_by", LeadSyncService.COMPLIANCE_CREATED_BY),
        ).register(self.queue)

        self.poller = FormSubmissionPoller(
            tenant_source=SupabaseTenantConfigSource(
                master,
                cipher=CredentialCipher.from_settings(self.settings),
                fallback=self._fallback_tenant(),
            ),
            event_source_factory=SupabaseEventSource.from_tenant_config,
            queue=self.queue,
            cursor_store=FileCursorStore(
                Path(self.poller_settings.state_file),
                stale_after=timedelta(days=self.poller_settings.stale_after_days),
            ),
            settings=self.poller_settings,
            job_max_attempts=self.queue_settings.max_attempts,
            job_ttl=self.queue_settings.job_ttl_seconds,
        )

        logger.info("Lead Sync Worker initialized successfully")

    async def run(self) -> None:
        """
        Main worker loop.

        Starts queue processing in the background, then polls tenants every
        poll interval until stopped.
        """
        await self.initialize()

        self.running = True
        consecutive_errors = 0
        self._queue_task = asyncio.create_task(self.queue.process())

        logger.info(
            f"Lead Sync Worker started - polling every {self.poller_settings.interval_seconds}s"
        )

        while self.running:
            try:
                if self.queue.is_halted:
                    logger.critical("Job queue halted by store limit - stopping worker")
                    break

                result = await self.poller.poll_once()
                if result.success:
                    self._polls_completed += 1
                    consecutive_errors = 0
                else:
                    self._polls_failed += 1

                await self._wait(self.poller_settings.interval_seconds)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                self._polls_failed += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await self._wait(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def _wait(self, seconds: float) -> None:
        """Sleep until the next poll, waking early on stop()."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self.running = False
        self._stop_event.set()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        if self.queue is None:
            return

        logger.info("Shutting down Lead Sync Worker...")
        self.stop()
        self.queue.stop()

        if self._queue_task is not None:
            await self._queue_task
            self._queue_task = None

        if self.compliance_checker is not None:
            await self.compliance_checker.close()
        if self.store is not None:
            await self.store.close()

        logger.info(
            f"Lead Sync Worker shutdown complete. "
            f"Polls: {self._polls_completed}, Failed polls: {self._polls_failed}"
        )
        self.queue = None

    async def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "running": self.running,
            "polls_completed": self._polls_completed,
            "polls_failed": self._polls_failed,
            "queue": await self.queue.get_stats() if self.queue else None,
            "poller": self.poller.get_state().model_dump(mode="json") if self.poller else None,
        }


async def main():
    """Entry point for running the lead sync worker as separate process."""
    worker = LeadSyncWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()

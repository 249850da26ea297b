"""
Lead Sync Job Handlers
Queue handlers for submission sync and automatic CPF compliance jobs
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from leadsync.domain.errors import ComplianceError, NonRetryableJobError
from leadsync.domain.interfaces.compliance_provider import ComplianceChecker
from leadsync.domain.models.job import (
    ComplianceCheckPayload,
    JobType,
    SyncFormSubmissionPayload,
    parse_job_payload,
)
from leadsync.domain.services.cpf import mask_cpf, validate_cpf
from leadsync.domain.services.job_queue import JobQueue
from leadsync.domain.services.lead_sync import LeadSyncService

logger = logging.getLogger(__name__)


class SyncRetryableError(Exception):
    """Raised so the queue retries a sync that failed unexpectedly."""
    pass


class LeadSyncJobHandlers:
    """
    Dispatches queued payloads to the lead sync service or the compliance checker.

    Failure mapping for the queue:
    - malformed payloads and rejected submissions raise NonRetryableJobError
    - unexpected sync failures raise SyncRetryableError (retried with backoff)
    - compliance rejections are logged; transport or server errors are
      re-raised so the queue gets its one retry
    """

    def __init__(
        self,
        sync_service: LeadSyncService,
        compliance_checker: Optional[ComplianceChecker] = None,
        created_by: str = LeadSyncService.COMPLIANCE_CREATED_BY
    ):
        self.sync_service = sync_service
        self.compliance_checker = compliance_checker
        self.created_by = created_by

    def register(self, queue: JobQueue) -> None:
        """Register handlers for every job type the pipeline enqueues."""
        for job_type in JobType:
            queue.register_handler(job_type, self.handle)

    async def handle(self, payload: Dict[str, Any]) -> None:
        try:
            parsed = parse_job_payload(payload)
        except ValidationError as e:
            raise NonRetryableJobError(f"Invalid job payload: {e}") from e

        if isinstance(parsed, SyncFormSubmissionPayload):
            await self.handle_sync(parsed)
        elif isinstance(parsed, ComplianceCheckPayload):
            await self.handle_compliance_check(parsed)
        else:
            raise NonRetryableJobError(f"Unsupported payload kind: {type(parsed).__name__}")

    async def handle_sync(self, payload: SyncFormSubmissionPayload) -> None:
        result = await self.sync_service.sync_event(payload.event)

        if result.success:
            logger.info(
                f"[SyncHandler] Submission {payload.event.id} synced to lead {result.lead_id} "
                f"(pipeline: {result.pipeline_status})"
            )
            return

        if result.retryable:
            raise SyncRetryableError(f"Sync failed for submission {payload.event.id}: {result.message}")

        raise NonRetryableJobError(f"Submission {payload.event.id} rejected: {result.message}")

    async def handle_compliance_check(self, payload: ComplianceCheckPayload) -> None:
        masked = mask_cpf(payload.cpf)

        if self.compliance_checker is None or not await self.compliance_checker.is_configured(payload.tenant_id):
            logger.warning(
                f"[CPF-Check] Compliance provider not configured for tenant {payload.tenant_id} - "
                f"skipping check for lead {payload.lead_id}"
            )
            return

        if not validate_cpf(payload.cpf):
            logger.info(f"[CPF-Check] Invalid CPF ({masked}) - skipping check for lead {payload.lead_id}")
            return

        logger.info(f"[CPF-Check] Running automatic check for lead {payload.lead_id} (cpf={masked})")

        try:
            result = await self.compliance_checker.check(
                payload.cpf,
                tenant_id=payload.tenant_id,
                lead_id=payload.lead_id,
                submission_id=payload.submission_id,
                created_by=self.created_by,
                person_name=payload.person_name,
                person_phone=payload.person_phone,
                force_new_record=True,
            )
        except ComplianceError as e:
            if e.status_code is None or e.status_code >= 500:
                raise
            logger.error(f"[CPF-Check] Check rejected for lead {payload.lead_id} ({e.status_code}): {e.message}")
            return

        logger.info(
            f"[CPF-Check] Lead {payload.lead_id}: status={result.status}, "
            f"risk_score={result.risk_score}, cache={'HIT' if result.from_cache else 'MISS'}"
        )

        try:
            await self.sync_service.repository.update(
                payload.tenant_id,
                payload.lead_id,
                {"cpf_status": result.status, "cpf_checked_at": datetime.now(timezone.utc)},
            )
        except Exception as e:
            logger.error(f"[CPF-Check] Failed to record check result on lead {payload.lead_id}: {e}")

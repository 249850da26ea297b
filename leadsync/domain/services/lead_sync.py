"""
Lead Sync Service
Reconciles form submission events into the tenant's lead aggregate

Every submission creates or updates exactly one lead per (tenant, canonical
phone), assigns the board label and pipeline stage that match its form and
qualification status, and requests at most one automatic CPF compliance
check per lead.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from leadsync.domain.interfaces.lead_repository import LeadRepository
from leadsync.domain.models.event import FormStatus, FormSubmissionEvent
from leadsync.domain.models.job import ComplianceCheckPayload, JobType
from leadsync.domain.models.lead import Label, Lead, PipelineStatus, QualificationStatus
from leadsync.domain.services.cpf import mask_cpf, normalize_cpf, validate_cpf
from leadsync.domain.services.job_queue import JobQueue
from leadsync.domain.services.phone_normalizer import resolve_phone

logger = logging.getLogger(__name__)


_FORM_STATUS_PIPELINE = {
    FormStatus.NOT_SENT: PipelineStatus.INITIAL_CONTACT,
    FormStatus.SENT: PipelineStatus.FORM_SENT,
    FormStatus.OPENED: PipelineStatus.FORM_OPENED,
    FormStatus.STARTED: PipelineStatus.FORM_INCOMPLETE,
    FormStatus.COMPLETED: PipelineStatus.FORM_COMPLETE,
}


def derive_qualification_status(passed: Optional[bool]) -> Optional[str]:
    """approved/rejected from the form's pass flag; None while unscored."""
    if passed is None:
        return None
    return QualificationStatus.APPROVED if passed else QualificationStatus.REJECTED


def get_pipeline_status(form_status: Optional[str], qualification_status: Optional[str]) -> str:
    """
    Pipeline stage for a form/qualification pair.

    Qualification outranks form progress. Unknown form states fall back to
    the initial stage.
    """
    if qualification_status == QualificationStatus.APPROVED:
        return PipelineStatus.FORM_APPROVED
    if qualification_status == QualificationStatus.REJECTED:
        return PipelineStatus.FORM_REJECTED

    return _FORM_STATUS_PIPELINE.get(form_status, PipelineStatus.INITIAL_CONTACT)


def resolve_label(
    labels: Iterable[Label],
    form_status: str,
    qualification_status: Optional[str],
) -> Tuple[Optional[Label], Optional[str]]:
    """
    Pick the board label for a lead, in strict tier order:

    1. exact: same form_status and qualification_status
    2. partial: same form_status, label has no qualification_status
    3. fallback: the not_sent (initial contact) label

    Within a tier, tenant-owned labels win over global ones.

    Returns:
        (label, tier) or (None, None) when no tier matches
    """
    active = sorted(
        (label for label in labels if label.active),
        key=lambda label: label.tenant_id is None,
    )

    if qualification_status is not None:
        for label in active:
            if label.form_status == form_status and label.qualification_status == qualification_status:
                return label, "exact"

    for label in active:
        if label.form_status == form_status and label.qualification_status is None:
            return label, "partial"

    fallback = [label for label in active if label.form_status == FormStatus.NOT_SENT]
    if fallback:
        fallback.sort(key=lambda label: label.qualification_status is not None)
        return fallback[0], "fallback"

    return None, None


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values; nested dicts are compacted and dropped when empty."""
    compacted = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = _compact(value)
            if not value:
                continue
        if value is None:
            continue
        compacted[key] = value
    return compacted


def merge_extra_data(existing: Optional[Dict[str, Any]], form_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge a submission's extended fields into the lead's extra data.

    Fields missing from the new submission keep their earlier values, so a
    partial submission never erases what a previous one captured.
    """
    merged = dict(existing) if isinstance(existing, dict) else {}
    previous = merged.get("form_data")
    previous = dict(previous) if isinstance(previous, dict) else {}

    for key, value in _compact(form_data).items():
        if isinstance(value, dict) and isinstance(previous.get(key), dict):
            previous[key] = {**previous[key], **value}
        else:
            previous[key] = value

    merged["form_data"] = previous
    return merged


@dataclass
class SyncResult:
    """Outcome of reconciling one submission."""
    success: bool
    message: str
    lead_id: Optional[str] = None
    pipeline_status: Optional[str] = None
    retryable: bool = False
    created: bool = False
    compliance_job_id: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadSyncService:
    """
    Idempotent submission -> lead reconciliation.

    Replaying the same submission leaves the lead unchanged apart from
    updated_at. Concurrent syncs of the same lead inside this process are
    serialized; across processes the last write wins.
    """

    COMPLIANCE_CREATED_BY = "system-auto-cpf"

    def __init__(
        self,
        repository: LeadRepository,
        compliance_queue: Optional[JobQueue] = None,
        compliance_max_attempts: int = 2,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize lead sync service.

        Args:
            repository: Lead and label storage
            compliance_queue: Queue receiving CPF compliance jobs (None disables them)
            compliance_max_attempts: Attempts allowed for each compliance job
            clock: Timestamp source, injectable for tests
        """
        self.repository = repository
        self.compliance_queue = compliance_queue
        self.compliance_max_attempts = compliance_max_attempts
        self._clock = clock or _utcnow
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, tenant_id: str, canonical_key: str) -> asyncio.Lock:
        key = (tenant_id, canonical_key)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def sync_event(self, event: FormSubmissionEvent) -> SyncResult:
        """
        Create or update the lead for one submission.

        Returns:
            SyncResult; retryable=False for input the pipeline will never
            accept, retryable=True for unexpected failures
        """
        try:
            logger.info(f"[LeadSync] Syncing submission {event.id}...")

            if not event.contact_phone:
                logger.warning(f"[LeadSync] Submission {event.id} has no phone")
                return SyncResult(success=False, message="Submission has no phone")

            # Every lead must be attributable to exactly one tenant
            if not event.tenant_id:
                logger.error(f"[LeadSync] Submission {event.id} has no tenant_id - refusing to sync")
                return SyncResult(
                    success=False,
                    message="Submission has no tenant_id - multi-tenant isolation violation",
                )

            phone = resolve_phone(event.contact_phone)
            if not phone.digits:
                logger.warning(f"[LeadSync] Submission {event.id} phone has no digits: {event.contact_phone!r}")
                return SyncResult(success=False, message="Submission phone has no digits")

            logger.info(f"[LeadSync] Phone normalized: {event.contact_phone} -> {phone.canonical} ({phone.flag})")

            form_status = event.form_status or FormStatus.COMPLETED
            qualification_status = derive_qualification_status(event.passed)
            pipeline_status = get_pipeline_status(form_status, qualification_status)
            cpf_normalized = normalize_cpf(event.contact_cpf) or None

            logger.info(
                f"[LeadSync] Status: form_status={form_status}, qualification_status={qualification_status}, "
                f"pipeline_status={pipeline_status}, score={event.total_score}"
            )

            label_id, label_resolved = await self._find_label_id(event.tenant_id, form_status, qualification_status)

            async with self._lock_for(event.tenant_id, phone.canonical):
                existing = await self.repository.find_by_canonical_key(event.tenant_id, phone.canonical)

                if existing is None:
                    lead = await self._create_lead(
                        event, phone.canonical, form_status, qualification_status,
                        pipeline_status, cpf_normalized, label_id,
                    )
                    already_checked = False
                else:
                    lead = await self._update_lead(
                        existing, event, form_status, qualification_status,
                        pipeline_status, cpf_normalized, label_id, label_resolved,
                    )
                    already_checked = existing.compliance_already_checked

                compliance_job_id = await self._guard_compliance_check(
                    lead, event, qualification_status, cpf_normalized, already_checked,
                )

            return SyncResult(
                success=True,
                lead_id=lead.id,
                message="Lead created" if existing is None else "Lead updated",
                pipeline_status=pipeline_status,
                created=existing is None,
                compliance_job_id=compliance_job_id,
            )

        except Exception as e:
            logger.error(f"[LeadSync] Error syncing submission {event.id}: {e}", exc_info=True)
            return SyncResult(success=False, message=str(e) or "Sync failed", retryable=True)

    async def _find_label_id(
        self,
        tenant_id: str,
        form_status: str,
        qualification_status: Optional[str],
    ) -> Tuple[Optional[str], bool]:
        """
        Returns:
            (label_id, resolved); resolved is False when the lookup failed and
            the lead's current label should be kept
        """
        try:
            labels = await self.repository.list_active_labels(tenant_id)
        except Exception as e:
            logger.error(f"[LeadSync] Label lookup failed, continuing without label: {e}")
            return None, False

        label, tier = resolve_label(labels, form_status, qualification_status)
        if label is None:
            logger.warning("[LeadSync] No label matched - lead will have no label")
            return None, True

        logger.info(f"[LeadSync] Label ({tier} match): \"{label.name}\" ({form_status} + {qualification_status})")
        return label.id, True

    async def _create_lead(
        self,
        event: FormSubmissionEvent,
        canonical_key: str,
        form_status: str,
        qualification_status: Optional[str],
        pipeline_status: str,
        cpf_normalized: Optional[str],
        label_id: Optional[str],
    ) -> Lead:
        now = self._clock()
        completed = form_status == FormStatus.COMPLETED

        lead = Lead(
            tenant_id=event.tenant_id,
            phone=event.contact_phone,
            canonical_key=canonical_key,
            name=event.contact_name or None,
            email=event.contact_email or None,
            form_status=form_status,
            qualification_status=qualification_status,
            pipeline_status=pipeline_status,
            score=event.total_score,
            label_id=label_id,
            form_opened=bool(event.formulario_aberto),
            form_opened_at=now if event.formulario_aberto else None,
            form_started=bool(event.formulario_iniciado),
            form_started_at=now if event.formulario_iniciado else None,
            form_completed=completed,
            form_completed_at=now if completed else None,
            extra_data=merge_extra_data({}, event.extended_form_data()),
            created_at=now,
            updated_at=now,
        )
        if cpf_normalized:
            lead.cpf = event.contact_cpf
            lead.cpf_normalized = cpf_normalized

        created = await self.repository.insert(lead)
        logger.info(f"[LeadSync] New lead {created.id} created (pipeline: {pipeline_status})")
        return created

    async def _update_lead(
        self,
        lead: Lead,
        event: FormSubmissionEvent,
        form_status: str,
        qualification_status: Optional[str],
        pipeline_status: str,
        cpf_normalized: Optional[str],
        label_id: Optional[str],
        label_resolved: bool,
    ) -> Lead:
        now = self._clock()
        logger.info(f"[LeadSync] Updating existing lead: {lead.id}")

        changes: Dict[str, Any] = {
            # Identity: first non-null value wins
            "name": lead.name or event.contact_name or None,
            "email": lead.email or event.contact_email or None,
            # Status: latest submission wins
            "form_status": form_status,
            "qualification_status": qualification_status,
            "pipeline_status": pipeline_status,
            "score": event.total_score,
            "extra_data": merge_extra_data(lead.extra_data, event.extended_form_data()),
            "updated_at": now,
        }
        if label_resolved:
            changes["label_id"] = label_id

        changes["form_opened"] = bool(event.formulario_aberto)
        if event.formulario_aberto and not lead.form_opened_at:
            changes["form_opened_at"] = now

        changes["form_started"] = bool(event.formulario_iniciado)
        if event.formulario_iniciado and not lead.form_started_at:
            changes["form_started_at"] = now

        if form_status == FormStatus.COMPLETED:
            changes["form_completed"] = True
            changes["form_completed_at"] = lead.form_completed_at or now

        if cpf_normalized:
            changes["cpf"] = event.contact_cpf
            changes["cpf_normalized"] = cpf_normalized

        updated = await self.repository.update(lead.tenant_id, lead.id, changes)
        logger.info(f"[LeadSync] Lead {updated.id} updated (pipeline: {pipeline_status})")
        return updated

    async def _guard_compliance_check(
        self,
        lead: Lead,
        event: FormSubmissionEvent,
        qualification_status: Optional[str],
        cpf_normalized: Optional[str],
        already_checked: bool,
    ) -> Optional[str]:
        """
        Request the automatic CPF check once per lead.

        Only approved submissions carrying a valid CPF qualify, and only while
        the lead has no compliance marker. The marker is written before the
        job is enqueued, so a redelivery never sees an enqueued job without it.
        A failed marker write propagates and the sync is retried.
        """
        if qualification_status != QualificationStatus.APPROVED or not cpf_normalized:
            return None

        if self.compliance_queue is None:
            logger.debug("[LeadSync] No compliance queue configured - skipping CPF check")
            return None

        if already_checked:
            logger.info(
                f"[LeadSync] CPF already checked for lead {lead.id} "
                f"(cpf_status={lead.cpf_status}) - skipping duplicate check"
            )
            return None

        if not validate_cpf(cpf_normalized):
            logger.info(f"[LeadSync] Invalid CPF ({mask_cpf(cpf_normalized)}) - skipping check for lead {lead.id}")
            return None

        # Claim the lead before enqueueing; a replay that sees the marker skips
        await self.repository.update(
            lead.tenant_id, lead.id, {"cpf_check_requested_at": self._clock()}
        )

        job_id = await self.dispatch_compliance_check(
            ComplianceCheckPayload(
                cpf=cpf_normalized,
                tenant_id=lead.tenant_id,
                lead_id=lead.id,
                submission_id=event.id,
                person_name=event.contact_name or lead.name,
                person_phone=lead.canonical_key,
            )
        )
        if job_id is None:
            await self._release_compliance_claim(lead)

        return job_id

    async def _release_compliance_claim(self, lead: Lead) -> None:
        """Clear the marker so the next approved submission asks again."""
        try:
            await self.repository.update(lead.tenant_id, lead.id, {"cpf_check_requested_at": None})
        except Exception as e:
            logger.error(
                f"[LeadSync] Failed to clear CPF check marker for lead {lead.id}, "
                f"automatic check will not be retried: {e}"
            )

    async def dispatch_compliance_check(self, payload: ComplianceCheckPayload) -> Optional[str]:
        """
        Best-effort, non-blocking request for a compliance check.

        Only enqueues the job; the provider call happens in the job handler.
        Failures are logged and never propagate to the sync that asked.

        Returns:
            The compliance job id, or None if nothing was enqueued
        """
        if self.compliance_queue is None:
            logger.debug("[LeadSync] No compliance queue configured - skipping CPF check")
            return None

        try:
            job_id = await self.compliance_queue.add(
                JobType.CPF_COMPLIANCE_CHECK,
                payload,
                max_attempts=self.compliance_max_attempts,
            )
        except Exception as e:
            logger.error(f"[LeadSync] Failed to dispatch CPF check for lead {payload.lead_id}: {e}")
            return None

        logger.info(
            f"[LeadSync] CPF check dispatched for approved lead {payload.lead_id} "
            f"(cpf={mask_cpf(payload.cpf)}, job={job_id})"
        )
        return job_id

"""
Domain Models Package
"""
from leadsync.domain.models.event import FormSubmissionEvent, FormStatus
from leadsync.domain.models.job import (
    Job,
    JobType,
    DeadLetterRecord,
    SyncFormSubmissionPayload,
    ComplianceCheckPayload,
    parse_job_payload,
)
from leadsync.domain.models.lead import Lead, Label, QualificationStatus, PipelineStatus
from leadsync.domain.models.cursor import TenantCursor, PollerState

__all__ = [
    "FormSubmissionEvent",
    "FormStatus",
    "Job",
    "JobType",
    "DeadLetterRecord",
    "SyncFormSubmissionPayload",
    "ComplianceCheckPayload",
    "parse_job_payload",
    "Lead",
    "Label",
    "QualificationStatus",
    "PipelineStatus",
    "TenantCursor",
    "PollerState",
]

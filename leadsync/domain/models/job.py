"""
Background Job Models
A queued unit of work plus the typed payloads the pipeline enqueues
"""
import time
import uuid
from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, Optional, Dict, Any, Literal, Union
from enum import Enum

from leadsync.domain.models.event import FormSubmissionEvent


class JobType(str, Enum):
    """Job types registered by the pipeline"""
    SYNC_FORM_SUBMISSION = "sync_form_submission"
    CPF_COMPLIANCE_CHECK = "cpf_compliance_check"


# Module-level default for retry logic
DEFAULT_MAX_ATTEMPTS = 3


def new_job_id() -> str:
    """Millisecond timestamp plus random suffix, sortable by creation."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class Job(BaseModel):
    """
    A single queued job.

    Owned by the JobQueue for its whole life: stored under its own key with a
    TTL, referenced from the queue index, deleted on success and moved to a
    dead-letter record once its attempts are exhausted.
    """

    id: str = Field(default_factory=new_job_id)
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    # Body TTL chosen at enqueue time, reused when a retry re-stores the job
    ttl_seconds: Optional[int] = Field(default=None, ge=1)

    # Epoch seconds
    created_at: float = Field(default_factory=time.time)
    available_at: float = 0.0
    processed_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_store_dict(self) -> dict:
        """Serialize for key-value storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_store_dict(cls, data: dict) -> "Job":
        """Deserialize from key-value storage."""
        return cls.model_validate(data)

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.type}, "
            f"attempt={self.attempts}/{self.max_attempts})"
        )


class DeadLetterRecord(BaseModel):
    """A job that exhausted its retry budget, kept for manual inspection."""
    job: Job
    failed_at: float = Field(default_factory=time.time)
    reason: Optional[str] = None


class SyncFormSubmissionPayload(BaseModel):
    """Reconcile one form submission into its lead."""
    kind: Literal["sync_form_submission"] = "sync_form_submission"
    event: FormSubmissionEvent


class ComplianceCheckPayload(BaseModel):
    """Run the automatic CPF compliance check for an approved lead."""
    kind: Literal["cpf_compliance_check"] = "cpf_compliance_check"
    cpf: str
    tenant_id: str
    lead_id: str
    submission_id: str
    person_name: Optional[str] = None
    person_phone: Optional[str] = None


JobPayload = Annotated[
    Union[SyncFormSubmissionPayload, ComplianceCheckPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(JobPayload)


def parse_job_payload(data: Dict[str, Any]) -> Union[SyncFormSubmissionPayload, ComplianceCheckPayload]:
    """Validate a stored payload into its tagged model."""
    return _payload_adapter.validate_python(data)

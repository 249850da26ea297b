"""
Lead Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class QualificationStatus:
    """Outcome of a scored form"""
    APPROVED = "approved"
    REJECTED = "rejected"


class PipelineStatus:
    """Human-facing funnel stage shown on the lead board"""
    INITIAL_CONTACT = "contato-inicial"
    FORM_SENT = "formulario-enviado"
    FORM_OPENED = "formulario-aberto"
    FORM_INCOMPLETE = "formulario-incompleto"
    FORM_COMPLETE = "formulario-completo"
    FORM_APPROVED = "formulario-aprovado"
    FORM_REJECTED = "formulario-reprovado"


class Lead(BaseModel):
    """
    Per-tenant, per-person aggregate reconciled from form submissions.

    Exactly one lead exists per (tenant_id, canonical_key).
    """
    id: Optional[str] = None
    tenant_id: str
    phone: Optional[str] = None
    canonical_key: str
    name: Optional[str] = None
    email: Optional[str] = None
    cpf: Optional[str] = None
    cpf_normalized: Optional[str] = None
    origin: str = "formulario"

    # Funnel
    form_status: Optional[str] = None
    qualification_status: Optional[str] = None
    pipeline_status: Optional[str] = None
    score: Optional[float] = None
    label_id: Optional[str] = None

    form_opened: bool = False
    form_opened_at: Optional[datetime] = None
    form_started: bool = False
    form_started_at: Optional[datetime] = None
    form_completed: bool = False
    form_completed_at: Optional[datetime] = None

    extra_data: Dict[str, Any] = {}

    # Compliance markers
    cpf_status: Optional[str] = None
    cpf_checked_at: Optional[datetime] = None
    cpf_check_requested_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def compliance_already_checked(self) -> bool:
        """True once a compliance check was requested or recorded."""
        return bool(self.cpf_status or self.cpf_checked_at or self.cpf_check_requested_at)


class Label(BaseModel):
    """Board label matched against a lead's form and qualification status"""
    id: str
    tenant_id: Optional[str] = None  # None = shared by all tenants
    name: str = ""
    form_status: str
    qualification_status: Optional[str] = None
    active: bool = Field(default=True)

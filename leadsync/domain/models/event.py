"""
Form Submission Event Model
A row of the tenant's form_submissions table, as seen by the pipeline
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class FormStatus:
    """Form progress states, in funnel order"""
    NOT_SENT = "not_sent"
    SENT = "sent"
    OPENED = "opened"
    STARTED = "started"
    COMPLETED = "completed"

    ALL = (NOT_SENT, SENT, OPENED, STARTED, COMPLETED)


class FormSubmissionEvent(BaseModel):
    """
    One form submission, read from the tenant's external store.

    The external system keeps updating the same row as the respondent moves
    through the form (opened -> started -> completed), so updated_at is what
    the poller's cursor follows.
    """

    # Identity
    id: str = Field(..., description="Submission id in the tenant's store")
    tenant_id: Optional[str] = Field(default=None, description="Tenant that owns the submission")
    form_id: Optional[str] = None

    # Change tracking
    updated_at: datetime
    created_at: Optional[datetime] = None

    # Contact
    contact_phone: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_cpf: Optional[str] = None
    instagram_handle: Optional[str] = None
    birth_date: Optional[str] = None

    # Address
    address_cep: Optional[str] = None
    address_street: Optional[str] = None
    address_number: Optional[str] = None
    address_complement: Optional[str] = None
    address_neighborhood: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None

    # Scheduling
    agendou_reuniao: Optional[bool] = None
    data_agendamento: Optional[str] = None

    # Answers and scoring
    answers: Optional[Any] = None
    total_score: Optional[float] = None
    passed: Optional[bool] = None
    form_status: str = FormStatus.COMPLETED
    formulario_aberto: bool = True
    formulario_iniciado: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any], tenant_id: str) -> "FormSubmissionEvent":
        """
        Build an event from a raw form_submissions row.

        Missing progress fields get the same defaults the form app writes for
        legacy rows: a row without form_status is a completed submission.
        """
        data = {k: v for k, v in row.items() if k in cls.model_fields}
        data["id"] = str(row["id"])
        data["tenant_id"] = tenant_id
        if not data.get("form_status"):
            data["form_status"] = FormStatus.COMPLETED
        if data.get("formulario_aberto") is None:
            data["formulario_aberto"] = True
        if data.get("formulario_iniciado") is None:
            data["formulario_iniciado"] = True
        return cls(**data)

    @property
    def cursor_key(self) -> tuple:
        """Position of this row in (updated_at, id) order."""
        return (self.updated_at, self.id)

    def extended_form_data(self) -> Dict[str, Any]:
        """Fields kept on the lead's extra data, outside the fixed columns."""
        return {
            "instagram_handle": self.instagram_handle,
            "birth_date": self.birth_date,
            "address": {
                "cep": self.address_cep,
                "street": self.address_street,
                "number": self.address_number,
                "complement": self.address_complement,
                "neighborhood": self.address_neighborhood,
                "city": self.address_city,
                "state": self.address_state,
            },
            "agendou_reuniao": self.agendou_reuniao,
            "data_agendamento": self.data_agendamento,
            "answers": self.answers,
            "submission_id": self.id,
            "form_id": self.form_id,
        }

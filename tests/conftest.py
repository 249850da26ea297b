"""
Shared test fixtures and in-memory fakes for the lead sync pipeline
"""
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from leadsync.core.config import QueueSettings
from leadsync.domain.interfaces.event_source import EventSource, TenantConfig, TenantConfigSource
from leadsync.domain.interfaces.lead_repository import LeadRepository
from leadsync.domain.models.cursor import TenantCursor
from leadsync.domain.models.event import FormSubmissionEvent
from leadsync.domain.models.lead import Label, Lead
from leadsync.domain.services.job_queue import JobQueue
from leadsync.infrastructure.storage.memory_store import InMemoryKeyValueStore


BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock; epoch seconds when called, datetime via .now()."""

    def __init__(self, start: datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> float:
        return self.current.timestamp()

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeLeadRepository(LeadRepository):
    """Leads kept in a dict, with the same tenant scoping as the real tables."""

    def __init__(self, labels: Optional[List[Label]] = None):
        self.leads: Dict[str, Lead] = {}
        self.labels: List[Label] = labels or []
        self.fail_labels: Optional[Exception] = None
        self.fail_updates: Optional[Exception] = None
        self.inserts = 0
        self.updates: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    async def find_by_canonical_key(self, tenant_id: str, canonical_key: str) -> Optional[Lead]:
        for lead in self.leads.values():
            if lead.tenant_id == tenant_id and lead.canonical_key == canonical_key:
                return lead.model_copy(deep=True)
        return None

    async def insert(self, lead: Lead) -> Lead:
        stored = lead.model_copy(update={"id": f"lead-{next(self._ids)}"}, deep=True)
        self.leads[stored.id] = stored
        self.inserts += 1
        return stored.model_copy(deep=True)

    async def update(self, tenant_id: str, lead_id: str, changes: Dict[str, Any]) -> Lead:
        if self.fail_updates is not None:
            raise self.fail_updates
        lead = self.leads.get(lead_id)
        if lead is None or lead.tenant_id != tenant_id:
            raise LookupError(f"Lead {lead_id} not found for tenant {tenant_id}")
        self.updates.append(dict(changes))
        updated = lead.model_copy(update=changes, deep=True)
        self.leads[lead_id] = updated
        return updated.model_copy(deep=True)

    async def list_active_labels(self, tenant_id: str) -> List[Label]:
        if self.fail_labels is not None:
            raise self.fail_labels
        return [
            label for label in self.labels
            if label.active and label.tenant_id in (None, tenant_id)
        ]

    def leads_for(self, tenant_id: str) -> List[Lead]:
        return [lead for lead in self.leads.values() if lead.tenant_id == tenant_id]


class FakeEventSource(EventSource):
    """Rows served in (updated_at, id) order, filtered the way the real query filters."""

    def __init__(self, events: Optional[List[FormSubmissionEvent]] = None, error: Optional[Exception] = None):
        self.events = list(events or [])
        self.error = error
        self.cursors_seen: List[Optional[TenantCursor]] = []

    async def fetch_since(self, cursor: Optional[TenantCursor], limit: int = 50) -> List[FormSubmissionEvent]:
        self.cursors_seen.append(cursor)
        if self.error is not None:
            raise self.error

        rows = sorted(self.events, key=lambda e: e.cursor_key)
        if cursor is not None and cursor.is_compound:
            rows = [e for e in rows if e.cursor_key > cursor.key()]
        elif cursor is not None and not cursor.is_empty:
            rows = [e for e in rows if e.updated_at >= cursor.last_seen_updated_at]
        return rows[:limit]


class FakeTenantSource(TenantConfigSource):
    def __init__(self, tenant_ids: List[str]):
        self.tenants = [
            TenantConfig(tenant_id=t, url=f"https://{t}.supabase.co", anon_key=f"anon-{t}")
            for t in tenant_ids
        ]

    async def list_tenants(self) -> List[TenantConfig]:
        return list(self.tenants)


def make_event(
    submission_id: str = "sub-1",
    tenant_id: Optional[str] = "tenant-a",
    updated_at: datetime = BASE_TIME,
    **overrides: Any
) -> FormSubmissionEvent:
    """A completed, approved submission unless overridden."""
    data = {
        "id": submission_id,
        "tenant_id": tenant_id,
        "form_id": "form-1",
        "updated_at": updated_at,
        "contact_phone": "31999972368",
        "contact_name": "Maria Silva",
        "contact_email": "maria@example.com",
        "contact_cpf": "529.982.247-25",
        "total_score": 85,
        "passed": True,
        "form_status": "completed",
    }
    data.update(overrides)
    return FormSubmissionEvent(**data)


def default_labels() -> List[Label]:
    return [
        Label(id="lbl-initial", name="Contato Inicial", form_status="not_sent"),
        Label(id="lbl-completed", name="Formulario Completo", form_status="completed"),
        Label(id="lbl-approved", name="Aprovado", form_status="completed", qualification_status="approved"),
        Label(id="lbl-rejected", name="Reprovado", form_status="completed", qualification_status="rejected"),
        Label(id="lbl-opened", name="Formulario Aberto", form_status="opened"),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def queue_settings():
    return QueueSettings(name="test-queue", max_concurrent=2)


@pytest.fixture
def queue(store, queue_settings, clock):
    return JobQueue(store, queue_settings, clock=clock)


@pytest.fixture
def repository():
    return FakeLeadRepository(labels=default_labels())

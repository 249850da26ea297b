"""
Compliance Provider Interface
Abstract base class for CPF background-check providers
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class ComplianceResult:
    """Outcome of a CPF check; the pipeline only logs it."""
    status: str
    risk_score: Optional[float] = None
    from_cache: bool = False
    check_id: Optional[str] = None


class ComplianceChecker(ABC):
    """Abstract base class for compliance providers"""

    @abstractmethod
    async def is_configured(self, tenant_id: str) -> bool:
        """Whether the tenant has credentials for the provider"""
        pass

    @abstractmethod
    async def check(
        self,
        cpf: str,
        *,
        tenant_id: str,
        lead_id: str,
        submission_id: str,
        created_by: str,
        person_name: Optional[str] = None,
        person_phone: Optional[str] = None,
        force_new_record: bool = False
    ) -> ComplianceResult:
        """
        Run (or serve from cache) a compliance check for a CPF.

        Args:
            cpf: Normalized CPF (digits only)
            tenant_id: Tenant requesting the check
            lead_id: Lead the check is attached to
            submission_id: Submission that triggered the check
            created_by: Actor recorded in the check history
            person_name: Name shown in the history
            person_phone: Phone shown in the history
            force_new_record: Always write a history entry, even on cache hit
        """
        pass

    async def close(self) -> None:
        """Release resources"""
        pass

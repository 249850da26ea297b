"""
Lead Repository Interface
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from leadsync.domain.models.lead import Lead, Label


class LeadRepository(ABC):
    """Abstract read/write access to leads and board labels"""

    @abstractmethod
    async def find_by_canonical_key(self, tenant_id: str, canonical_key: str) -> Optional[Lead]:
        """Return the tenant's lead for this canonical key, if any"""
        pass

    @abstractmethod
    async def insert(self, lead: Lead) -> Lead:
        """Persist a new lead and return it with its id"""
        pass

    @abstractmethod
    async def update(self, tenant_id: str, lead_id: str, changes: Dict[str, Any]) -> Lead:
        """Apply changes to an existing lead and return the stored result"""
        pass

    @abstractmethod
    async def list_active_labels(self, tenant_id: str) -> List[Label]:
        """Return active labels visible to the tenant (its own plus global)"""
        pass

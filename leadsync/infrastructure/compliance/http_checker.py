"""
HTTP Compliance Checker
CPF background checks through the compliance service's REST API
"""
import logging
from typing import Any, Dict, Optional

import httpx

from leadsync.domain.errors import ComplianceError
from leadsync.domain.interfaces.compliance_provider import ComplianceChecker, ComplianceResult

logger = logging.getLogger(__name__)


class HttpComplianceChecker(ComplianceChecker):
    """
    Compliance checks over HTTP.

    The service owns caching and check history; this client only posts a
    check request and reads back its summary.

    Endpoint: POST {base_url}/checks (Bearer token)
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_token: Optional[str],
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def is_configured(self, tenant_id: str) -> bool:
        return bool(self.base_url and self.api_token)

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
        payload: Dict[str, Any] = {
            "cpf": cpf,
            "tenant_id": tenant_id,
            "lead_id": lead_id,
            "submission_id": submission_id,
            "created_by": created_by,
            "person_name": person_name,
            "person_phone": person_phone,
            "force_new_record": force_new_record,
        }

        try:
            response = await self._get_client().post(
                f"{self.base_url}/checks",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_token}"},
            )
        except httpx.HTTPError as e:
            raise ComplianceError(f"Compliance request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Compliance check failed ({response.status_code}): {response.text}")
            raise ComplianceError(
                f"Compliance check failed: {response.text}",
                status_code=response.status_code,
            )

        data = response.json()
        return ComplianceResult(
            status=data.get("status", "unknown"),
            risk_score=data.get("risk_score"),
            from_cache=bool(data.get("from_cache", False)),
            check_id=data.get("check_id"),
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

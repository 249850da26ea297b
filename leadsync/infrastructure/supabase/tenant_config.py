"""
Supabase Tenant Config Source
Lists the tenants whose form submissions should be polled
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from leadsync.domain.errors import CredentialDecryptionError
from leadsync.domain.interfaces.event_source import TenantConfig, TenantConfigSource
from leadsync.infrastructure.security.credential_cipher import CredentialCipher

logger = logging.getLogger(__name__)


class SupabaseTenantConfigSource(TenantConfigSource):
    """
    Tenant connection details stored in the master project.

    Table: supabase_config (tenant_id, supabase_url, supabase_anon_key,
    supabase_bucket), with url and key Fernet-encrypted. Rows written before
    encryption was introduced hold plaintext values and are accepted as-is.

    When no row can be used, the project configured in the environment is
    polled as the default tenant.
    """

    TABLE = "supabase_config"

    def __init__(
        self,
        client: Any,
        cipher: Optional[CredentialCipher] = None,
        fallback: Optional[TenantConfig] = None,
    ):
        """
        Args:
            client: Master Supabase client
            cipher: Decrypts stored credentials (None = plaintext rows only)
            fallback: Tenant polled when the table yields nothing
        """
        self._client = client
        self._cipher = cipher
        self._fallback = fallback

    async def list_tenants(self) -> List[TenantConfig]:
        try:
            response = await asyncio.to_thread(
                self._client.table(self.TABLE).select("*").execute
            )
            rows = response.data or []
        except Exception as e:
            logger.error(f"[TenantConfig] Failed to read {self.TABLE}: {e}")
            if self._fallback is None:
                raise
            logger.info(f"[TenantConfig] Falling back to environment project (tenant: {self._fallback.tenant_id})")
            return [self._fallback]

        configs = []
        for row in rows:
            try:
                configs.append(self._from_row(row))
            except CredentialDecryptionError as e:
                logger.error(f"[TenantConfig] Could not decrypt config for tenant {row.get('tenant_id')}: {e}")

        if configs:
            logger.info(f"[TenantConfig] {len(configs)} tenant config(s) found")
            return configs

        if self._fallback is not None:
            logger.info(f"[TenantConfig] No stored configs, using environment project (tenant: {self._fallback.tenant_id})")
            return [self._fallback]

        logger.warning("[TenantConfig] No tenant configuration found in any source")
        return []

    def _from_row(self, row: Dict[str, Any]) -> TenantConfig:
        url = row.get("supabase_url") or ""
        anon_key = row.get("supabase_anon_key") or ""

        if self._cipher is not None:
            try:
                url, anon_key = self._cipher.decrypt(url), self._cipher.decrypt(anon_key)
            except CredentialDecryptionError:
                if not url.startswith("http"):
                    raise
        elif not url.startswith("http"):
            raise CredentialDecryptionError("Encrypted credentials but no encryption key configured")

        return TenantConfig(
            tenant_id=row["tenant_id"],
            url=url,
            anon_key=anon_key,
            bucket=row.get("supabase_bucket") or "receipts",
        )

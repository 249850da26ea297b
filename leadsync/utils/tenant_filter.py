"""
Tenant Filter Utility
Shared helper for applying consistent tenant filtering across Supabase queries
"""
from typing import Optional, Any


def apply_tenant_filter(
    query: Any,
    tenant_id: Optional[str],
    column: str = "tenant_id",
    include_global: bool = False
) -> Any:
    """
    Apply tenant filtering to a Supabase query.

    Args:
        query: Supabase query builder object (from supabase.table(...).select(...))
        tenant_id: Tenant that owns the rows
        column: Name of the tenant_id column (default: "tenant_id")
        include_global: Also match rows whose tenant column is NULL
            (records shared by every tenant, such as default labels)

    Returns:
        Modified query with tenant filter applied

    Usage:
        query = supabase.table("leads").select("*")
        query = apply_tenant_filter(query, tenant_id)
        response = query.execute()

    Raises:
        ValueError: when tenant_id is empty; pipeline queries are never
            allowed to span tenants
    """
    if not tenant_id:
        raise ValueError("tenant_id is required for tenant-scoped queries")

    if include_global:
        return query.or_(f"{column}.eq.{tenant_id},{column}.is.null")
    return query.eq(column, tenant_id)

"""
Credential resolution: per-tenant secrets for the backing systems.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .types import ErpCredentials, SkillContext, TenantCredentials

logger = logging.getLogger("switchboard")


def erp_credentials_from_config(config: Optional[Dict[str, Any]]) -> Optional[ErpCredentials]:
    """Build ERP credentials from an integration config; None when incomplete."""
    if not config:
        return None
    url = config.get("url")
    db = config.get("db")
    username = config.get("username")
    api_key = config.get("api_key") or config.get("password")
    if not (url and db and username and api_key):
        return None
    return ErpCredentials(url=str(url), db=str(db), username=str(username), api_key=str(api_key))


class CredentialResolver:
    """Reads active integrations from the tenant store."""

    def resolve(self, tenant_id: str) -> TenantCredentials:
        from ..storage import tenant_store

        config = tenant_store.get_integration_config(tenant_id, "erp")
        erp = erp_credentials_from_config(config)
        if config and erp is None:
            logger.warning("incomplete erp integration tenant=%s", tenant_id)
        return TenantCredentials(erp=erp)


class StaticCredentialResolver(CredentialResolver):
    """Fixed credentials for every tenant (CLI runs and tests)."""

    def __init__(self, credentials: Optional[TenantCredentials] = None):
        self._credentials = credentials or TenantCredentials()

    def resolve(self, tenant_id: str) -> TenantCredentials:
        return self._credentials


def build_skill_context(tenant_id: str, user_id: str, resolver: CredentialResolver) -> SkillContext:
    """Build the immutable per-request context skills execute with."""
    return SkillContext(tenant_id=tenant_id, user_id=user_id, credentials=resolver.resolve(tenant_id))

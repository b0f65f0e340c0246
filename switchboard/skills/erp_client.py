"""
JSON-RPC client for the ERP backing system.

Only the query contract the skills need is implemented: authenticate,
execute_kw, search_read, read_group and search_count. There is no retry
here; transient failures surface as ApiError and the model decides what to
do next round.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import ApiError, AuthenticationError
from .types import ErpCredentials, SkillContext

logger = logging.getLogger("switchboard")

Domain = List[Any]

_ids = itertools.count(1)


class ErpClient:
    """Async ERP client. Use as `async with ErpClient(creds) as erp: ...`."""

    def __init__(
        self,
        credentials: ErpCredentials,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = credentials.url.rstrip("/")
        self.db = credentials.db
        self.username = credentials.username
        self._api_key = credentials.api_key
        self._uid: Optional[int] = None
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "ErpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def rpc(self, service: str, method: str, *args: Any) -> Any:
        body = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": list(args)},
            "id": next(_ids),
        }
        try:
            resp = await self._http.post(f"{self.url}/jsonrpc", json=body)
        except httpx.TimeoutException as exc:
            raise ApiError("ERP request timed out", retryable=True) from exc
        except httpx.TransportError as exc:
            raise ApiError(f"ERP network error: {exc}", retryable=True) from exc

        if resp.status_code >= 400:
            raise ApiError(
                f"ERP HTTP error: {resp.status_code}",
                status_code=resp.status_code,
                retryable=resp.status_code == 429 or resp.status_code >= 502,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ApiError("ERP returned a non-JSON response") from exc

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            error_data = error.get("data") or {}
            message = error_data.get("message") or error.get("message") or "Unknown error"
            raise ApiError(f"RPC error: {message}", details={"name": error_data.get("name")})
        return data.get("result")

    async def authenticate(self) -> int:
        if self._uid:
            return self._uid
        uid = await self.rpc("common", "authenticate", self.db, self.username, self._api_key, {})
        if not uid:
            raise AuthenticationError("ERP", details={"username": self.username})
        self._uid = int(uid)
        return self._uid

    async def execute_kw(
        self,
        model: str,
        method: str,
        args: Optional[List[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        uid = await self.authenticate()
        return await self.rpc(
            "object",
            "execute_kw",
            self.db,
            uid,
            self._api_key,
            model,
            method,
            args or [],
            kwargs or {},
        )

    async def search_read(
        self,
        model: str,
        domain: Optional[Domain] = None,
        *,
        fields: Optional[List[str]] = None,
        limit: int = 50,
        offset: int = 0,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"fields": fields or [], "limit": limit, "offset": offset}
        if order:
            kwargs["order"] = order
        return await self.execute_kw(model, "search_read", [domain or []], kwargs) or []

    async def read_group(
        self,
        model: str,
        domain: Optional[Domain] = None,
        fields: Optional[List[str]] = None,
        groupby: Optional[List[str]] = None,
        *,
        limit: Optional[int] = 80,
        offset: int = 0,
        orderby: Optional[str] = None,
        lazy: bool = True,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {
            "fields": fields or [],
            "groupby": groupby or [],
            "offset": offset,
            "lazy": lazy,
        }
        if limit is not None:
            kwargs["limit"] = limit
        if orderby:
            kwargs["orderby"] = orderby
        return await self.execute_kw(model, "read_group", [domain or []], kwargs) or []

    async def search_count(self, model: str, domain: Optional[Domain] = None) -> int:
        return int(await self.execute_kw(model, "search_count", [domain or []]) or 0)


def open_client(context: SkillContext) -> ErpClient:
    """Build a client from the request's resolved ERP credentials."""
    creds = context.credentials.erp
    if creds is None:
        raise AuthenticationError("ERP")
    return ErpClient(creds)

"""
HTTP client for the dynamic query execution backend.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

import httpx

from config import QUERY_BACKEND_TIMEOUT, QUERY_BACKEND_URL
from utils import clean_text

logger = logging.getLogger(__name__)

ALL_COMPANIES = "-1"
FORWARDED_HEADERS = ("authorization", "x-tenant-domain", "x-fingerprint")
EMPTY_BODY_STATUSES = (204, 205)


class QueryBackendNotConfigured(RuntimeError):
    pass


class QueryExecutionError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def normalize_company_ids(company_ids: str | Iterable[str] | None) -> str | None:
    """
    Join company ids into the `companyIds` parameter, or None for "all companies".
    """
    if company_ids is None:
        return None
    if isinstance(company_ids, str):
        company_ids = company_ids.split(",")
    cleaned = [clean_text(item) for item in company_ids]
    cleaned = [item for item in cleaned if item]
    if not cleaned or cleaned == [ALL_COMPANIES]:
        return None
    return ",".join(cleaned)


def _decode_body(response: httpx.Response) -> Any:
    if response.status_code in EMPTY_BODY_STATUSES:
        return {}
    text = response.text
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if response.is_success:
            return {"success": True, "data": text}
        return {"success": False, "error": text}


class DynamicQueryClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else QUERY_BACKEND_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else QUERY_BACKEND_TIMEOUT
        self._transport = transport

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        forwarded = {"Content-Type": "application/json"}
        for name, value in (headers or {}).items():
            if name.lower() in FORWARDED_HEADERS and value:
                forwarded[name.lower()] = value
        return forwarded

    async def run(
        self,
        query_id: str,
        *,
        flatten: bool = False,
        company_ids: str | Iterable[str] | None = None,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if not self.base_url:
            raise QueryBackendNotConfigured("QUERY_BACKEND_URL is not configured.")
        query_id = clean_text(query_id)
        if not query_id:
            raise QueryExecutionError("A query id is required.", status_code=400)

        params = {"flatten": "true" if flatten else "false"}
        companies = normalize_company_ids(company_ids)
        if companies is not None:
            params["companyIds"] = companies

        url = f"{self.base_url}/api/dynamic-query/{query_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, params=params, headers=self._headers(headers), json=body or {})
        except httpx.HTTPError as exc:
            logger.error("Dynamic query %s request error: %s", query_id, exc)
            raise QueryExecutionError(f"Failed to reach the query backend: {exc}") from exc

        payload = _decode_body(response)
        if not response.is_success:
            logger.error("Dynamic query %s HTTP error: %s %s", query_id, response.status_code, response.text[:500])
            raise QueryExecutionError(
                f"Query backend returned HTTP {response.status_code}.",
                status_code=response.status_code,
                body=payload,
            )
        return payload

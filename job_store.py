# job_store.py
# Export records live in the Supabase `exports` table; this module only reads
# and patches them. MemoryJobStore mirrors the same interface in-process.
import copy
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

SELECT_COLUMNS = "design,id,status,user_id"


class JobStoreError(Exception):
    pass


def _json(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError as e:
        raise JobStoreError(f"unexpected response: {r.status_code} {r.text[:200]}") from e


class ExportRecord(BaseModel):
    id: Union[str, int]
    status: Optional[str] = None     # queued | processing | completed | failed
    user_id: Optional[Any] = None
    design: Optional[Any] = None


class SupabaseJobStore:
    """PostgREST access to one table using the service-role key (bypasses RLS)."""

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        table: str = "exports",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.base_url = f"{supabase_url.rstrip('/')}/rest/v1/{table}"
        self._service_key = service_key
        self._transport = transport
        self._timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers(),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def fetch(self, job_id: str) -> List[Dict[str, Any]]:
        """Return the rows matching `id` (at most one is requested)."""
        params = {"select": SELECT_COLUMNS, "id": f"eq.{job_id}", "limit": "1"}
        try:
            async with self._client() as client:
                r = await client.get(self.base_url, params=params)
        except httpx.HTTPError as e:
            raise JobStoreError(f"request failed: {e}") from e
        if r.status_code >= 300:
            raise JobStoreError(f"select failed: {r.status_code} {r.text}")
        rows = _json(r)
        if not isinstance(rows, list):
            raise JobStoreError(f"unexpected select response: {rows!r}")
        return rows

    async def update(
        self,
        job_id: str,
        fields: Dict[str, Any],
        *,
        only_if_status: Optional[str] = None,
    ) -> int:
        """
        PATCH the row with `id`. With `only_if_status`, the row is only touched
        when its current status matches. Returns the number of rows changed.
        """
        params = {"id": f"eq.{job_id}"}
        if only_if_status is not None:
            params["status"] = f"eq.{only_if_status}"
        headers = {"Prefer": "return=representation"}
        try:
            async with self._client() as client:
                r = await client.patch(self.base_url, params=params, json=fields, headers=headers)
        except httpx.HTTPError as e:
            raise JobStoreError(f"request failed: {e}") from e
        if r.status_code >= 300:
            raise JobStoreError(f"update failed: {r.status_code} {r.text}")
        if r.status_code == 204 or not r.content:
            return 0
        rows = _json(r)
        return len(rows) if isinstance(rows, list) else 0


class MemoryJobStore:
    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.writes: List[Tuple[str, Dict[str, Any]]] = []
        for row in rows or []:
            self.create(row)

    def create(self, row: Dict[str, Any]):
        with self._lock:
            self._rows[row["id"]] = copy.deepcopy(row)

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows.get(job_id)
            return copy.deepcopy(row) if row is not None else None

    async def fetch(self, job_id: str) -> List[Dict[str, Any]]:
        row = self.get(job_id)
        if row is None:
            return []
        return [{k: row.get(k) for k in SELECT_COLUMNS.split(",")}]

    async def update(
        self,
        job_id: str,
        fields: Dict[str, Any],
        *,
        only_if_status: Optional[str] = None,
    ) -> int:
        with self._lock:
            row = self._rows.get(job_id)
            if row is None:
                return 0
            if only_if_status is not None and row.get("status") != only_if_status:
                return 0
            row.update(fields)
            self.writes.append((job_id, dict(fields)))
            return 1

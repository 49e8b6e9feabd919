"""
ARAG Agent Copilot — Client History Store
Where a client's interaction history lives: the local workspace file or a
Supabase (PostgREST) table. One read/append interface keyed by the
normalized client identifier; the variant is chosen once at construction.

Remote failures never reach the caller. A failed remote read returns an
empty partition for that call (it does not fall back to local data, which
may be stale relative to the remote table). A failed remote write is logged.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from memory.local_store import LocalKeyValueStore
from orchestrator.errors import LocalStoreError, RemoteStoreError

logger = logging.getLogger("copilot.history")

HISTORY_KEY_PREFIX = "arag_memory_v2_"

CLIENT_MEMORY_DDL = """\
create table client_memory (
  id bigint generated by default as identity primary key,
  client_id text not null,
  summary text not null,
  date text,
  policy_number text,
  created_at timestamp with time zone default now()
);
create index client_memory_client_id_idx on client_memory (client_id, created_at desc);
"""


def normalize_client_id(raw: Optional[str]) -> str:
    """Trim and case-fold a client identifier. None → ''."""
    return (raw or "").strip().casefold()


# ============================================================
# Data Models
# ============================================================

@dataclass(frozen=True)
class InteractionRecord:
    """One resolved case. Immutable once created."""
    date: str
    summary: str
    policy_number: Optional[str] = None

    @classmethod
    def now(cls, summary: str, policy_number: Optional[str] = None, clock=None) -> "InteractionRecord":
        ts = (clock or datetime.now)()
        return cls(
            date=ts.strftime("%Y-%m-%d %H:%M:%S"),
            summary=summary,
            policy_number=policy_number or None,
        )

    def to_dict(self) -> dict:
        out = {"date": self.date, "summary": self.summary}
        if self.policy_number:
            out["policyNumber"] = self.policy_number
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "InteractionRecord":
        return cls(
            date=str(data.get("date", "")),
            summary=str(data.get("summary", "")),
            policy_number=data.get("policyNumber") or None,
        )

    @classmethod
    def from_row(cls, row: dict) -> "InteractionRecord":
        """Map a client_memory row (snake_case) to a record."""
        return cls(
            date=str(row.get("date") or row.get("created_at") or ""),
            summary=str(row.get("summary", "")),
            policy_number=row.get("policy_number") or None,
        )


# ============================================================
# Stores
# ============================================================

class HistoryStore:
    """Read/append interface. Partitions are newest-first lists."""

    mode = "abstract"

    def read(self, client_id: str) -> list:
        raise NotImplementedError

    def append(self, client_id: str, record: InteractionRecord):
        raise NotImplementedError

    def list_clients(self) -> list:
        return []


class LocalHistoryStore(HistoryStore):
    """History kept in the local workspace file, one key per client."""

    mode = "local"

    def __init__(self, kv: LocalKeyValueStore, cap: Optional[int] = 10):
        self.kv = kv
        self.cap = cap

    @staticmethod
    def key_for(client_id: str) -> str:
        return f"{HISTORY_KEY_PREFIX}{normalize_client_id(client_id)}"

    def read(self, client_id: str) -> list:
        if not normalize_client_id(client_id):
            return []
        raw = self.kv.get(self.key_for(client_id))
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LocalStoreError(f"History for '{normalize_client_id(client_id)}' is corrupt: {e}") from e
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise LocalStoreError(f"History for '{normalize_client_id(client_id)}' is not a list of records")
        return [InteractionRecord.from_dict(item) for item in items]

    def append(self, client_id: str, record: InteractionRecord):
        normalized = normalize_client_id(client_id)
        if not normalized:
            logger.warning("Local append skipped: empty client identifier")
            return
        partition = [record] + self.read(normalized)
        if self.cap:
            partition = partition[: self.cap]
        self.kv.set(
            self.key_for(normalized),
            json.dumps([r.to_dict() for r in partition], ensure_ascii=False),
        )
        logger.info(f"History appended locally for '{normalized}' ({len(partition)} records)")

    def list_clients(self) -> list:
        return [k[len(HISTORY_KEY_PREFIX):] for k in self.kv.keys(HISTORY_KEY_PREFIX)]


class RemoteHistoryStore(HistoryStore):
    """History kept in a Supabase table, reached over PostgREST."""

    mode = "remote"

    def __init__(self, url: str, api_key: str, table: str = "client_memory",
                 timeout: float = 15.0, client: httpx.Client = None):
        self._base_url = url.rstrip("/")
        self._table = table
        self._client = client or httpx.Client(
            base_url=self._base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
            },
            timeout=timeout,
        )

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self._table}"

    def _request(self, method: str, **kwargs) -> httpx.Response:
        """Send one request. Raises RemoteStoreError on any failure."""
        try:
            resp = self._client.request(method, self._path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Supabase {method} {self._path} failed: {e}") from e
        if resp.status_code >= 400:
            raise RemoteStoreError(
                f"Supabase {method} {self._path} → {resp.status_code}: {resp.text[:200]}"
            )
        return resp

    def query(self, client_id: str) -> list:
        """Strict read. Raises RemoteStoreError."""
        resp = self._request(
            "GET",
            params={
                "client_id": f"eq.{normalize_client_id(client_id)}",
                "select": "*",
                "order": "created_at.desc",
            },
        )
        try:
            rows = resp.json()
        except ValueError as e:
            raise RemoteStoreError(f"Supabase returned non-JSON body: {e}") from e
        if not isinstance(rows, list):
            raise RemoteStoreError(f"Supabase returned {type(rows).__name__}, expected a list")
        if not all(isinstance(row, dict) for row in rows):
            raise RemoteStoreError("Supabase returned a row that is not a JSON object")
        return [InteractionRecord.from_row(row) for row in rows]

    def insert(self, client_id: str, record: InteractionRecord):
        """Strict write. Raises RemoteStoreError."""
        self._request(
            "POST",
            json={
                "client_id": normalize_client_id(client_id),
                "summary": record.summary,
                "date": record.date,
                "policy_number": record.policy_number,
            },
            headers={"Content-Type": "application/json", "Prefer": "return=minimal"},
        )

    def read(self, client_id: str) -> list:
        if not normalize_client_id(client_id):
            return []
        try:
            records = self.query(client_id)
        except RemoteStoreError as e:
            logger.warning(f"Remote history read degraded to empty partition: {e}")
            return []
        logger.info(f"Remote history for '{normalize_client_id(client_id)}': {len(records)} records")
        return records

    def append(self, client_id: str, record: InteractionRecord):
        if not normalize_client_id(client_id):
            logger.warning("Remote append skipped: empty client identifier")
            return
        try:
            self.insert(client_id, record)
            logger.info(f"History appended remotely for '{normalize_client_id(client_id)}'")
        except RemoteStoreError as e:
            logger.error(f"Remote history write failed (non-fatal): {e}")

    def close(self):
        self._client.close()


# ============================================================
# Factory
# ============================================================

def remote_is_authoritative(settings) -> bool:
    """Remote wins only when enabled and fully configured."""
    return bool(settings.enabled and settings.url.strip() and settings.api_key.strip())


def build_history_store(settings, kv: LocalKeyValueStore, cap: Optional[int] = 10,
                        table: str = "client_memory", timeout: float = 15.0) -> HistoryStore:
    """Select the history variant once for the given cloud settings."""
    if remote_is_authoritative(settings):
        logger.info(f"History store: remote ({settings.url})")
        return RemoteHistoryStore(settings.url.strip(), settings.api_key.strip(),
                                  table=table, timeout=timeout)
    logger.info(f"History store: local ({kv.path})")
    return LocalHistoryStore(kv, cap=cap)

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

import logging

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from farmer_registry.config import (
    REGISTRY_API_PAGE_SIZE,
    REGISTRY_API_TIMEOUT,
    REGISTRY_API_TOKEN,
    REGISTRY_API_URL,
    REGISTRY_SEED_FILE,
)
from farmer_registry.core.errors import RecordNotFoundError
from farmer_registry.core.models import WIRE_NAMES, BusinessRecord

logger = logging.getLogger(__name__)

Snapshot = Tuple[BusinessRecord, ...]


class DataLoaderError(Exception):
    """Raised when the record source fails or returns unexpected shapes."""


class ReadOnlyStoreError(DataLoaderError):
    """Raised when a write is attempted against a store that only reads."""


class RecordStore(Protocol):
    """Supplies the full, current record set as an immutable snapshot."""

    def snapshot(self) -> Snapshot:
        ...


@runtime_checkable
class WritableRecordStore(Protocol):
    """A record store that also accepts new records (bulk import)."""

    def snapshot(self) -> Snapshot:
        ...

    def add_many(self, rows: Iterable[Mapping[str, Any]]) -> List[BusinessRecord]:
        ...


def is_writable(store: RecordStore) -> bool:
    return isinstance(store, WritableRecordStore)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryRecordStore:
    """
    Record store held in process memory.

    The store owns every write: it assigns ids (monotonic, never reused) and
    timestamps. Readers get a tuple snapshot that later writes do not affect.
    """

    def __init__(self, records: Iterable[BusinessRecord] = ()) -> None:
        self._records: List[BusinessRecord] = []
        self._last_id = 0
        seen = set()
        for r in records:
            if r.id in seen:
                raise DataLoaderError(f"Duplicate record id {r.id} in seed records")
            seen.add(r.id)
            self._records.append(r)
            self._last_id = max(self._last_id, r.id)

    def snapshot(self) -> Snapshot:
        return tuple(self._records)

    def add(self, data: Mapping[str, Any]) -> BusinessRecord:
        return self.add_many([data])[0]

    def add_many(self, rows: Iterable[Mapping[str, Any]]) -> List[BusinessRecord]:
        now = _utcnow()
        created: List[BusinessRecord] = []
        for row in rows:
            self._last_id += 1
            payload = dict(row)
            payload["id"] = self._last_id
            payload["createdAt"] = now
            payload["updatedAt"] = now
            payload.pop("created_at", None)
            payload.pop("updated_at", None)
            created.append(BusinessRecord.from_dict(payload))
        self._records.extend(created)
        logger.info("Stored %d new record(s); last id=%s", len(created), self._last_id)
        return created

    def update(self, record_id: int, changes: Mapping[str, Any]) -> BusinessRecord:
        for idx, current in enumerate(self._records):
            if current.id != record_id:
                continue
            payload = current.to_dict()
            for key, value in changes.items():
                payload[WIRE_NAMES.get(key, key)] = value
            payload["id"] = current.id
            payload["createdAt"] = current.created_at
            payload["updatedAt"] = _utcnow()
            updated = BusinessRecord.from_dict(payload)
            self._records[idx] = updated
            return updated
        raise RecordNotFoundError(record_id)

    def remove(self, record_id: int) -> None:
        before = len(self._records)
        self._records = [r for r in self._records if r.id != record_id]
        if len(self._records) == before:
            raise RecordNotFoundError(record_id)

    @classmethod
    def from_json_file(cls, path: Path) -> InMemoryRecordStore:
        """Load a JSON list of records (registry camelCase shape)."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise DataLoaderError(f"Could not read seed file {path}: {exc}") from exc

        if isinstance(data, dict):
            data = data.get("data") or []
        if not isinstance(data, list):
            raise DataLoaderError(f"Seed file {path} must contain a list of records")

        records = records_from_dicts(data)
        logger.info("Loaded %d records from %s", len(records), path)
        return cls(records)


def records_from_dicts(rows: Iterable[Mapping[str, Any]]) -> List[BusinessRecord]:
    """Convert raw dicts to records, skipping (and logging) unusable rows."""
    out: List[BusinessRecord] = []
    for row in rows:
        if not isinstance(row, Mapping):
            logger.warning("Skipping non-object record: %r", row)
            continue
        try:
            out.append(BusinessRecord.from_dict(row))
        except ValueError as exc:
            logger.warning("Skipping malformed record: %s", exc)
    return out


# ---------------------------------------------------------------------------
# Registry REST API store
# ---------------------------------------------------------------------------

def _build_retry_session() -> requests.Session:
    """
    Build a requests Session with conservative retries.
    The registry API sits behind a free-tier host that cold-starts slowly.
    """
    session = requests.Session()

    retry = Retry(
        total=5,
        connect=5,
        read=5,
        status=5,
        backoff_factor=0.6,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


_SESSION: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _SESSION
    if _SESSION is None:
        _SESSION = _build_retry_session()
    return _SESSION


class ApiRecordStore:
    """
    Read-only store over the registry REST API (GET /farmers, paged).

    Every snapshot() call re-fetches the full collection.
    """

    def __init__(
        self,
        base_url: str = REGISTRY_API_URL,
        token: str = REGISTRY_API_TOKEN,
        timeout_seconds: int = REGISTRY_API_TIMEOUT,
        page_size: int = REGISTRY_API_PAGE_SIZE,
        max_pages: int = 1_000,
    ) -> None:
        if not base_url:
            raise DataLoaderError("Missing registry API URL. Set REGISTRY_API_URL.")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = int(timeout_seconds)
        self.page_size = int(page_size)
        self.max_pages = int(max_pages)

    def _fetch_page(self, page: int) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        url = f"{self.base_url}/farmers"
        params = {"page": int(page), "limit": self.page_size}
        try:
            resp = _get_session().get(url, params=params, headers=headers, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise DataLoaderError(f"HTTP error while calling {url}: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            preview = (resp.text or "")[:200]
            raise DataLoaderError(f"Non-JSON response from registry (status={resp.status_code}). Preview: {preview}") from exc

        if not isinstance(data, dict):
            raise DataLoaderError(f"Unexpected registry response type: {type(data)}")

        # The API reports failures as 200/4xx with success=false in the body
        if not data.get("success", False):
            msg = data.get("message") or data.get("error") or data
            raise DataLoaderError(f"Registry returned success=false. Status={resp.status_code}. Detail={msg}")

        if not isinstance(data.get("data"), list):
            raise DataLoaderError("Registry response 'data' is not a list")

        return data

    def snapshot(self) -> Snapshot:
        rows: List[Dict[str, Any]] = []
        page = 1
        while page <= self.max_pages:
            body = self._fetch_page(page)
            batch = body["data"]
            rows.extend(batch)

            pages = body.get("pages")
            if not batch or len(batch) < self.page_size:
                break
            if isinstance(pages, int) and page >= pages:
                break
            page += 1
        else:
            logger.warning("Stopped after %d pages; registry may hold more records", self.max_pages)

        records = records_from_dicts(rows)
        logger.info("Fetched %d records from registry API (%d pages)", len(records), page)
        return tuple(records)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_store(seed_file: Optional[Path] = None) -> RecordStore:
    """
    Pick the record source from configuration:
      - REGISTRY_API_URL set   -> ApiRecordStore
      - seed JSON file present -> InMemoryRecordStore loaded from it
      - otherwise              -> empty InMemoryRecordStore
    """
    if REGISTRY_API_URL:
        logger.info("Using registry API at %s", REGISTRY_API_URL)
        return ApiRecordStore(base_url=REGISTRY_API_URL)

    path = Path(seed_file or REGISTRY_SEED_FILE)
    if path.exists():
        return InMemoryRecordStore.from_json_file(path)

    logger.warning("No registry API configured and no seed file at %s; starting empty.", path)
    return InMemoryRecordStore()


def records_to_frame(records: Iterable[BusinessRecord]) -> pd.DataFrame:
    """Flatten records into a DataFrame (camelCase columns, crops as names)."""
    rows = []
    for r in records:
        row = r.to_dict()
        row["crops"] = ", ".join(item.name for item in r.production)
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=list(BusinessRecord(id=1).to_dict().keys()))
    return pd.DataFrame.from_records(rows)

# services/records/client.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


class RecordsServiceError(RuntimeError):
    """Save server unreachable or returned something unusable."""


@dataclass(frozen=True)
class SaveResponse:
    success: bool
    message: str


@dataclass(frozen=True)
class StoredRecord:
    id: int
    doc_name: str
    npsn: str
    sn_bapp: str
    hasil_cek: str
    path: str
    created_at: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StoredRecord":
        return cls(
            id=int(d.get("ID") or 0),
            doc_name=str(d.get("doc_name") or ""),
            npsn=str(d.get("npsn") or ""),
            sn_bapp=str(d.get("sn_bapp") or ""),
            hasil_cek=str(d.get("hasil_cek") or ""),
            path=str(d.get("path") or ""),
            created_at=str(d.get("created_at") or ""),
        )


@dataclass(frozen=True)
class ScanStat:
    termin: str
    total_schools: int
    scanned: int
    logs_accepted: int

    @property
    def not_scanned(self) -> int:
        return self.total_schools - self.scanned


TOTAL_TERMIN = "Total"

_NUM_SPLIT_RE = re.compile(r"(\d+)")


def _natural_key(s: str):
    return [int(t) if t.isdigit() else t.lower() for t in _NUM_SPLIT_RE.split(s)]


def summarize_stats(rows: List[ScanStat]) -> List[ScanStat]:
    """Sort by termin (natural order, so 'Termin 10' follows 'Termin 9') and append a Total row."""
    ordered = sorted(rows, key=lambda r: _natural_key(r.termin))
    total = ScanStat(
        termin=TOTAL_TERMIN,
        total_schools=sum(r.total_schools for r in ordered),
        scanned=sum(r.scanned for r in ordered),
        logs_accepted=sum(r.logs_accepted for r in ordered),
    )
    return ordered + [total]


def document_filename(path: str) -> str:
    return re.split(r"[\\/]", path or "")[-1]


class RecordsClient:
    """Save service (write side) plus records listing and stats (read side)."""

    def __init__(
        self,
        *,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout_s: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def _json(self, r: requests.Response) -> Dict[str, Any]:
        try:
            body = r.json()
        except ValueError as e:
            raise RecordsServiceError(f"Invalid JSON from {r.url}: {e}") from e
        if not isinstance(body, dict):
            raise RecordsServiceError(f"Unexpected response from {r.url}")
        return body

    def save_sync(self, payload: Dict[str, Any]) -> SaveResponse:
        try:
            r = self.session.post(f"{self.base_url}/save", json=payload, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise RecordsServiceError(f"Could not reach the save server: {e}") from e

        # The server reports refusals as {success: false, message} with any status.
        body = self._json(r)
        return SaveResponse(success=bool(body.get("success")), message=str(body.get("message") or ""))

    def list_records_sync(self, npsn: str = "") -> List[StoredRecord]:
        params = {"npsn": npsn} if npsn else None
        try:
            r = self.session.get(f"{self.base_url}/records", params=params, timeout=self.timeout_s)
            r.raise_for_status()
        except requests.RequestException as e:
            raise RecordsServiceError(f"Failed to fetch records: {e}") from e

        body = self._json(r)
        if not body.get("success"):
            raise RecordsServiceError(body.get("message") or "Records listing failed")
        return [StoredRecord.from_dict(d) for d in (body.get("data") or [])]

    def stats_sync(self) -> List[ScanStat]:
        try:
            r = self.session.get(f"{self.base_url}/stats", timeout=self.timeout_s)
            r.raise_for_status()
        except requests.RequestException as e:
            raise RecordsServiceError(f"Failed to fetch stats: {e}") from e

        body = self._json(r)
        if not body.get("success"):
            raise RecordsServiceError(body.get("message") or "Unknown error from server")

        rows = [
            ScanStat(
                termin=str(d.get("termin") or ""),
                total_schools=int(d.get("total_schools") or 0),
                scanned=int(d.get("scanned") or 0),
                logs_accepted=int(d.get("logs_accepted") or 0),
            )
            for d in (body.get("data") or [])
        ]
        return summarize_stats(rows)

    def document_url(self, path: str) -> str:
        filename = document_filename(path)
        if not filename:
            raise ValueError(f"Invalid file path: {path!r}")
        return f"{self.base_url}/scans/{filename}"

    async def save(self, payload: Dict[str, Any]) -> SaveResponse:
        return await run_in_threadpool(self.save_sync, payload)

    async def list_records(self, npsn: str = "") -> List[StoredRecord]:
        return await run_in_threadpool(self.list_records_sync, npsn)

    async def stats(self) -> List[ScanStat]:
        return await run_in_threadpool(self.stats_sync)

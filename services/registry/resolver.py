# services/registry/resolver.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests
from starlette.concurrency import run_in_threadpool

from services.batch.domain import (
    MATCH_AMBIGUOUS,
    MATCH_ERROR,
    MATCH_IDLE,
    MATCH_MATCHED,
    MATCH_NOT_MATCHED,
    RegistryRecord,
)
from services.validation.schema_validation import validate_registry_rows

logger = logging.getLogger(__name__)

PRIMARY_PARAM = "no_bapp"     # document serial
SECONDARY_PARAM = "npsn"      # school id


class RegistryError(RuntimeError):
    """Registry unreachable, non-success, or undecodable."""


@dataclass(frozen=True)
class Resolution:
    state: str
    candidates: Tuple[RegistryRecord, ...] = ()
    selected: Optional[RegistryRecord] = None
    message: str = ""
    used_secondary: bool = False


def classify_records(rows: List[Dict[str, Any]], used_secondary: bool = False) -> Resolution:
    """
    0 rows -> not-matched, 1 -> matched (pre-selected), 2+ -> ambiguous.
    The lookup key does not change the classification.
    """
    records = tuple(RegistryRecord.from_dict(r) for r in rows)
    if not records:
        return Resolution(state=MATCH_NOT_MATCHED, message="No registry record found.", used_secondary=used_secondary)
    if len(records) == 1:
        return Resolution(
            state=MATCH_MATCHED,
            candidates=records,
            selected=records[0],
            message="Registry record found.",
            used_secondary=used_secondary,
        )
    return Resolution(
        state=MATCH_AMBIGUOUS,
        candidates=records,
        message=f"{len(records)} registry records found, pick one.",
        used_secondary=used_secondary,
    )


class RegistryResolver:
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

    def fetch_rows(self, identifier: str, use_secondary: bool = False) -> List[Dict[str, Any]]:
        param = SECONDARY_PARAM if use_secondary else PRIMARY_PARAM
        url = f"{self.base_url}/is-approved"
        try:
            r = self.session.get(url, params={param: identifier}, timeout=self.timeout_s)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise RegistryError(str(e)) from e

        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            return []
        if not isinstance(data, list):
            raise RegistryError("registry 'data' is not a list")

        ok, msg = validate_registry_rows(data)
        if not ok:
            raise RegistryError(f"malformed registry response: {msg}")
        return data

    def resolve_sync(self, identifier: str, use_secondary: bool = False) -> Resolution:
        key = (identifier or "").strip()
        if not key:
            return Resolution(state=MATCH_IDLE, used_secondary=use_secondary)

        try:
            rows = self.fetch_rows(key, use_secondary)
        except RegistryError as e:
            logger.warning("Registry lookup failed for %s=%s: %s",
                           SECONDARY_PARAM if use_secondary else PRIMARY_PARAM, key, e)
            return Resolution(
                state=MATCH_ERROR,
                message=f"Registry check failed: {e}",
                used_secondary=use_secondary,
            )

        res = classify_records(rows, used_secondary=use_secondary)
        logger.info("Registry lookup %s -> %s (%d records)", key, res.state, len(res.candidates))
        return res

    async def resolve(self, identifier: str, use_secondary: bool = False) -> Resolution:
        return await run_in_threadpool(self.resolve_sync, identifier, use_secondary)

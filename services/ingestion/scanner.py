from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from starlette.concurrency import run_in_threadpool

from services.imaging.transform import ImageDecodeError, from_data_url

logger = logging.getLogger(__name__)

MOCK_PROFILES = ["Mock Profile 1", "Mock Profile 2"]


class ScannerError(RuntimeError):
    """Bridge unreachable or reported a failed scan."""


@dataclass(frozen=True)
class RawPair:
    front: Optional[bytes]   # lands in slot A
    back: Optional[bytes]    # lands in slot B (identification surface)


class ScannerBridge:
    """
    Client for the local scanner bridge. In mock mode the scan comes from the
    save server's /mock-scan endpoint and profiles are fixed.
    """

    def __init__(
        self,
        *,
        base_url: str,
        mock_url: Optional[str] = None,
        use_mock: bool = False,
        session: Optional[requests.Session] = None,
        timeout_s: float = 120.0,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.mock_url = (mock_url or "").rstrip("/")
        self.use_mock = use_mock
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            r = self.session.get(url, params=params, timeout=self.timeout_s)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ScannerError(f"Scanner bridge not reachable: {e}") from e
        if not isinstance(body, dict):
            raise ScannerError("Scanner bridge returned an unexpected body.")
        return body

    def list_profiles_sync(self) -> List[str]:
        if self.use_mock:
            return list(MOCK_PROFILES)

        body = self._get_json(f"{self.base_url}/profiles")
        profiles = body.get("profiles")
        if not body.get("success") or not isinstance(profiles, list):
            return []
        return [str(p) for p in profiles]

    def scan_sync(self, profile: str) -> List[RawPair]:
        if self.use_mock:
            body = self._get_json(f"{self.mock_url}/mock-scan")
        else:
            body = self._get_json(f"{self.base_url}/scan", params={"profile": profile})

        data = body.get("data")
        if not body.get("success") or not isinstance(data, list):
            raise ScannerError(body.get("message") or "Unknown error")

        pairs: List[RawPair] = []
        for i, item in enumerate(data):
            try:
                pairs.append(RawPair(front=from_data_url(item.get("front")), back=from_data_url(item.get("back"))))
            except (ImageDecodeError, AttributeError) as e:
                raise ScannerError(f"Scan item {i} is not a valid image pair: {e}") from e

        logger.info("Scanner returned %d document(s) for profile %r", len(pairs), profile)
        return pairs

    async def list_profiles(self) -> List[str]:
        return await run_in_threadpool(self.list_profiles_sync)

    async def scan(self, profile: str) -> List[RawPair]:
        return await run_in_threadpool(self.scan_sync, profile)

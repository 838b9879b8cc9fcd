# services/batch/orchestrator.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from services.batch import transitions as T
from services.batch.controller import DocumentPipelineController
from services.batch.domain import (
    MATCH_MATCHED,
    STATUS_ERROR,
    STATUS_IDLE,
    STATUS_PROCESSING,
    STATUS_SUCCESS,
    BatchSnapshot,
    DocumentPair,
)
from services.batch.store import BatchStore, new_pair
from services.extraction.identifier import placeholder_name
from services.imaging.transform import DEFAULT_JPEG_QUALITY, ImageDecodeError, bake_pending, to_data_url
from services.ingestion.scanner import RawPair, ScannerBridge, ScannerError
from services.records.client import RecordsClient, RecordsServiceError
from services.validation.schema_validation import validate_save_payload

logger = logging.getLogger(__name__)

SAVED = "saved"
FAILED = "failed"
REJECTED_UNVERIFIED = "rejected_unverified"
REJECTED_POLICY = "rejected_policy"
REJECTED_BUSY = "rejected_busy"
ALREADY_SAVED = "already_saved"


@dataclass(frozen=True)
class SaveOutcome:
    ok: bool
    reason: str
    message: str


def check_save_gate(pair: DocumentPair) -> Optional[SaveOutcome]:
    """None when the pair may be saved, otherwise the rejection."""
    if pair.is_saved:
        return SaveOutcome(False, ALREADY_SAVED, "Document is already saved.")
    if pair.is_saving:
        return SaveOutcome(False, REJECTED_BUSY, "Save already in progress.")
    if pair.match_state != MATCH_MATCHED or pair.selected_record is None:
        return SaveOutcome(False, REJECTED_UNVERIFIED, "Verify the BAPP data against the registry first.")
    if not pair.selected_record.is_approved:
        return SaveOutcome(
            False,
            REJECTED_POLICY,
            "Document cannot be saved because its registry check result is not 'sesuai'.",
        )
    return None


def build_save_payload(pair: DocumentPair, front: Optional[bytes], back: Optional[bytes], position: int) -> Dict[str, Any]:
    """`front`/`back` are the baked images of slot B / slot A respectively."""
    rec = pair.selected_record
    return {
        "doc_name": pair.display_name or placeholder_name(position),
        "npsn": rec.school_id,
        "sn_bapp": rec.document_serial,
        "hasil_cek": rec.match_result,
        "image_front": to_data_url(front),
        "image_back": to_data_url(back),
        "nama_sekolah": rec.school_name,
        "kode": rec.issued_code,
    }


class BatchOrchestrator:
    def __init__(
        self,
        *,
        store: BatchStore,
        controller: DocumentPipelineController,
        scanner: Optional[ScannerBridge] = None,
        records: Optional[RecordsClient] = None,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        self.store = store
        self.controller = controller
        self.scanner = scanner
        self.records = records
        self.jpeg_quality = jpeg_quality

    @property
    def snapshot(self) -> BatchSnapshot:
        return self.store.snapshot

    # --- acquisition ---

    async def list_profiles(self) -> List[str]:
        if self.scanner is None:
            return []
        try:
            return await self.scanner.list_profiles()
        except ScannerError as e:
            logger.warning("Could not list scanner profiles: %s", e)
            return []

    def load(self, raw_pairs: Iterable[RawPair]) -> BatchSnapshot:
        return self.store.load(new_pair(side_a=r.front, side_b=r.back) for r in raw_pairs)

    async def acquire(self, profile: str) -> BatchSnapshot:
        """Scan and load a fresh batch without running OCR yet."""
        if self.scanner is None:
            raise ScannerError("No scanner bridge configured.")

        self.store.clear()
        self.store.set_status(STATUS_PROCESSING, "Connecting to scanner...")
        try:
            raw = await self.scanner.scan(profile)
        except ScannerError as e:
            logger.warning("Scan failed: %s", e)
            return self.store.set_status(STATUS_ERROR, f"Scan failed: {e}")

        self.load(raw)
        return self.store.set_status(
            STATUS_SUCCESS, f"Scan finished, {len(raw)} document(s) found. Starting OCR..."
        )

    async def scan(self, profile: str) -> BatchSnapshot:
        snap = await self.acquire(profile)
        if snap.status.kind == STATUS_ERROR:
            return snap
        return await self.run_batch()

    # --- processing ---

    async def run_batch(self) -> BatchSnapshot:
        """
        Mark every document as processing, then run OCR -> resolve for each
        one strictly in order. Every transition publishes a snapshot.
        """
        generation = self.store.generation
        doc_ids = [p.doc_id for p in self.store.snapshot.pairs]
        self.store.set_status(STATUS_PROCESSING, "Running OCR...")
        for doc_id in doc_ids:
            self.store.update(doc_id, T.ocr_started)

        processed = 0
        for doc_id in doc_ids:
            if self.store.get(doc_id) is None:
                continue
            await self.controller.run_ocr(doc_id)
            processed += 1

        if self.store.generation != generation:
            logger.info("Batch replaced while running; %d document(s) processed", processed)
            return self.store.snapshot

        logger.info("Batch finished: %d document(s) processed", processed)
        return self.store.set_status(STATUS_SUCCESS, f"Scan & OCR finished, {processed} document(s) processed.")

    def remove(self, doc_id: str) -> bool:
        removed = self.store.remove(doc_id)
        if removed and not self.store.snapshot.pairs:
            self.store.set_status(STATUS_IDLE, "")
        return removed

    def clear(self) -> BatchSnapshot:
        return self.store.clear()

    # --- persistence ---

    async def save(self, doc_id: str) -> SaveOutcome:
        pair = self.controller.require(doc_id)

        rejection = check_save_gate(pair)
        if rejection is not None:
            logger.warning("Save of %s rejected: %s", doc_id, rejection.reason)
            self.store.update(doc_id, lambda p: T.noted(p, rejection.message))
            return rejection

        if self.records is None:
            raise RecordsServiceError("No save service configured.")

        position = self.store.snapshot.position(doc_id) or 0
        self.store.update(doc_id, T.save_started)
        try:
            front, back = await bake_pending(pair, self.jpeg_quality)
            payload = build_save_payload(pair, front, back, position + 1)
            ok, msg = validate_save_payload(payload)
            if not ok:
                raise ValueError(f"Invalid save payload: {msg}")
            resp = await self.records.save(payload)
        except (RecordsServiceError, ImageDecodeError, ValueError) as e:
            logger.warning("Save of %s failed: %s", doc_id, e)
            message = str(e)
            self.store.update(doc_id, lambda p: T.save_finished(p, False, message))
            return SaveOutcome(False, FAILED, message)
        except Exception as e:
            logger.exception("Save of %s crashed", doc_id)
            message = f"Save failed: {e}"
            self.store.update(doc_id, lambda p: T.save_finished(p, False, message))
            return SaveOutcome(False, FAILED, message)

        self.store.update(doc_id, lambda p: T.save_finished(p, resp.success, resp.message))
        if resp.success:
            logger.info("Saved document %s (%s)", doc_id, pair.display_name)
            return SaveOutcome(True, SAVED, resp.message)
        return SaveOutcome(False, FAILED, resp.message)

# services/batch/controller.py
from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple, Union

from starlette.concurrency import run_in_threadpool

from services.batch import transitions as T
from services.batch.domain import (
    IDENTIFICATION_SLOT,
    MATCH_AMBIGUOUS,
    MATCH_ERROR,
    MATCH_LOADING,
    OCR_PROCESSING,
    DocumentPair,
    RegistryRecord,
    check_slot,
)
from services.batch.store import BatchStore
from services.batch.swap import SlotRef, swap_slots
from services.extraction.identifier import extract_identifier
from services.imaging.transform import DEFAULT_JPEG_QUALITY, rotate_image_async
from services.registry.resolver import RegistryResolver, Resolution

logger = logging.getLogger(__name__)

OCR_FAILURE_TEXT = "(OCR failed)"


class TextRecognizer(Protocol):
    def recognize(self, image: bytes, lang: str) -> str: ...


class DocumentNotFound(LookupError):
    """No document with that id in the current batch."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"Document {doc_id} is not in the current batch")
        self.doc_id = doc_id


class DocumentPipelineController:
    """
    Sequences OCR -> extraction -> registry resolution for one document and
    exposes the operator entry points (retry, manual search, select, rename,
    rotate, swap).

    All writes go through BatchStore.update(doc_id, transition), so a result
    that lands after the document was deleted is dropped. A document's own
    pipeline is non-reentrant: retry is a no-op while its OCR is running and
    manual search is a no-op while OCR or a lookup is in flight.
    """

    def __init__(
        self,
        *,
        store: BatchStore,
        ocr: TextRecognizer,
        resolver: RegistryResolver,
        lang: str = "id",
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        self.store = store
        self.ocr = ocr
        self.resolver = resolver
        self.lang = lang
        self.jpeg_quality = jpeg_quality

    def require(self, doc_id: str) -> DocumentPair:
        pair = self.store.get(doc_id)
        if pair is None:
            raise DocumentNotFound(doc_id)
        return pair

    # --- OCR ---

    async def _read_identifier(self, pair: DocumentPair) -> Tuple[str, Optional[str]]:
        image = pair.image(IDENTIFICATION_SLOT)
        if image is None:
            logger.warning("Document %s has no image in slot %s", pair.doc_id, IDENTIFICATION_SLOT)
            return OCR_FAILURE_TEXT, None

        try:
            # OCR what the operator sees, pending rotation included.
            upright = await rotate_image_async(image, pair.rotation(IDENTIFICATION_SLOT), self.jpeg_quality)
            text = await run_in_threadpool(self.ocr.recognize, upright, self.lang)
        except Exception:
            logger.exception("OCR engine failed on document %s", pair.doc_id)
            return OCR_FAILURE_TEXT, None

        text = text or ""
        return text, extract_identifier(text)

    async def run_ocr(self, doc_id: str) -> Optional[DocumentPair]:
        """
        OCR slot B, extract the identifier and, when one is found, resolve it.
        No re-entrancy guard here; the batch runner pre-marks documents as
        processing and operator calls go through retry().
        """
        pair = self.store.update(doc_id, T.ocr_started)
        if pair is None:
            return None

        text, identifier = await self._read_identifier(pair)

        position = self.store.snapshot.position(doc_id)
        if position is None:
            logger.debug("Document %s removed during OCR; result dropped", doc_id)
            return None

        pair = self.store.update(doc_id, lambda p: T.ocr_finished(p, text, identifier, position + 1))
        if pair is None or not identifier:
            return pair

        return await self._resolve(doc_id, identifier, use_secondary=False)

    async def retry(self, doc_id: str) -> DocumentPair:
        pair = self.require(doc_id)
        if pair.ocr_state == OCR_PROCESSING:
            return pair
        return await self.run_ocr(doc_id) or pair

    # --- registry ---

    async def _resolve(self, doc_id: str, key: str, use_secondary: bool) -> Optional[DocumentPair]:
        if self.store.update(doc_id, T.resolution_started) is None:
            return None

        try:
            res = await self.resolver.resolve(key, use_secondary=use_secondary)
        except Exception as e:
            logger.exception("Registry resolution crashed for document %s", doc_id)
            res = Resolution(state=MATCH_ERROR, message=f"Registry check failed: {e}", used_secondary=use_secondary)

        return self.store.update(doc_id, lambda p: T.resolution_finished(p, res))

    async def resolve(self, doc_id: str, key: Optional[str] = None, use_secondary: bool = False) -> DocumentPair:
        """
        Manual search. `key` overrides the pair's identifier; use_secondary
        looks it up as a school id (npsn) instead of a document serial.
        """
        pair = self.require(doc_id)
        if pair.ocr_state == OCR_PROCESSING or pair.match_state == MATCH_LOADING:
            return pair

        lookup = (key or "").strip() or (pair.identifier or "")
        if not lookup:
            return pair

        return await self._resolve(doc_id, lookup, use_secondary) or pair

    # --- operator edits ---

    def select_candidate(self, doc_id: str, choice: Union[RegistryRecord, int]) -> DocumentPair:
        pair = self.require(doc_id)
        if isinstance(choice, RegistryRecord):
            record = choice
        else:
            try:
                idx = int(choice)
                if idx < 0:
                    raise IndexError(idx)
                record = pair.candidates[idx]
            except (IndexError, ValueError) as e:
                raise ValueError(f"No candidate #{choice} for document {doc_id}") from e

        if pair.match_state != MATCH_AMBIGUOUS:
            logger.info("Candidate selected on document %s in state %s", doc_id, pair.match_state)
        return self.store.update(doc_id, lambda p: T.candidate_selected(p, record))

    def rename(self, doc_id: str, name: str) -> DocumentPair:
        self.require(doc_id)
        return self.store.update(doc_id, lambda p: T.renamed(p, name))

    # --- images ---

    async def rotate(self, doc_id: str, slot: str) -> DocumentPair:
        """Bake one more clockwise quarter turn into the slot's buffer."""
        slot = check_slot(slot)
        pair = self.require(doc_id)
        image = pair.image(slot)
        if pair.is_rotating or image is None:
            return pair

        degrees = pair.rotation(slot) + 90
        self.store.update(doc_id, T.rotation_started)
        try:
            rotated = await rotate_image_async(image, degrees, self.jpeg_quality)
        except Exception as e:
            logger.warning("Rotation failed for document %s slot %s: %s", doc_id, slot, e)
            return self.store.update(doc_id, lambda p: T.rotation_failed(p, f"Rotation failed: {e}")) or pair

        def _apply(p: DocumentPair) -> DocumentPair:
            # A swap may have moved the image away while we were encoding.
            if p.image(slot) is not image:
                return T.rotation_failed(p, "Image moved during rotation; rotate again.")
            return T.rotation_baked(p, slot, rotated)

        return self.store.update(doc_id, _apply) or pair

    def turn_pending(self, doc_id: str, slot: str) -> DocumentPair:
        """Deferred mode: record a quarter turn without touching the buffer."""
        slot = check_slot(slot)
        self.require(doc_id)
        return self.store.update(doc_id, lambda p: T.pending_turned(p, slot))

    def swap(self, source: SlotRef, target: SlotRef) -> None:
        self.require(source.doc_id)
        self.require(target.doc_id)
        self.store.update_pairs(lambda pairs: swap_slots(pairs, source, target))

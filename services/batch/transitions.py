# services/batch/transitions.py
"""
One pure function per pipeline event. Each takes a DocumentPair and returns
the next one; nothing else in the codebase writes ocr_state / match_state /
candidates / selected_record directly.

match_state == matched  <=>  selected_record is not None
"""
from __future__ import annotations

from dataclasses import replace
from typing import Optional

from services.batch.domain import (
    MATCH_IDLE,
    MATCH_LOADING,
    MATCH_MATCHED,
    OCR_ERROR,
    OCR_PROCESSING,
    OCR_SUCCESS,
    DocumentPair,
    RegistryRecord,
)
from services.extraction.identifier import placeholder_name
from services.imaging.transform import normalize_rotation
from services.registry.resolver import Resolution


def _cleared_match(p: DocumentPair, **changes) -> DocumentPair:
    return replace(p, match_state=MATCH_IDLE, candidates=(), selected_record=None, **changes)


def ocr_started(p: DocumentPair) -> DocumentPair:
    return replace(p, ocr_state=OCR_PROCESSING, message="")


def ocr_finished(p: DocumentPair, text: str, identifier: Optional[str], position: int) -> DocumentPair:
    if identifier:
        return replace(
            p,
            recognized_text=text,
            identifier=identifier,
            display_name=identifier,
            ocr_state=OCR_SUCCESS,
            message=f"Document number detected: {identifier}",
        )
    # Without an identifier there is nothing to resolve.
    return _cleared_match(
        p,
        recognized_text=text,
        identifier=None,
        display_name=placeholder_name(position),
        ocr_state=OCR_ERROR,
        message="Document number not found.",
    )


def resolution_started(p: DocumentPair) -> DocumentPair:
    return replace(p, match_state=MATCH_LOADING, candidates=(), selected_record=None, message="")


def resolution_finished(p: DocumentPair, res: Resolution) -> DocumentPair:
    selected = res.selected if res.state == MATCH_MATCHED else None
    return replace(
        p,
        match_state=res.state,
        candidates=tuple(res.candidates),
        selected_record=selected,
        message=res.message,
    )


def candidate_selected(p: DocumentPair, record: RegistryRecord) -> DocumentPair:
    # Approval is judged at save time, not here.
    return replace(
        p,
        match_state=MATCH_MATCHED,
        candidates=(record,),
        selected_record=record,
        message="",
    )


def renamed(p: DocumentPair, name: str) -> DocumentPair:
    cleaned = (name or "").strip()
    return _cleared_match(p, display_name=cleaned or name, identifier=cleaned or None, message="")


def rotation_started(p: DocumentPair) -> DocumentPair:
    return replace(p, is_rotating=True)


def rotation_baked(p: DocumentPair, slot: str, image: bytes) -> DocumentPair:
    img_f, rot_f = DocumentPair.slot_fields(slot)
    return replace(p, is_rotating=False, **{img_f: image, rot_f: 0})


def rotation_failed(p: DocumentPair, message: str) -> DocumentPair:
    return replace(p, is_rotating=False, message=message)


def pending_turned(p: DocumentPair, slot: str, degrees: int = 90) -> DocumentPair:
    _, rot_f = DocumentPair.slot_fields(slot)
    return replace(p, **{rot_f: normalize_rotation(getattr(p, rot_f) + degrees)})


def save_started(p: DocumentPair) -> DocumentPair:
    return replace(p, is_saving=True, message="")


def save_finished(p: DocumentPair, ok: bool, message: str) -> DocumentPair:
    return replace(p, is_saving=False, is_saved=p.is_saved or ok, message=message)


def noted(p: DocumentPair, message: str) -> DocumentPair:
    return replace(p, message=message)

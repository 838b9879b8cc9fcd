# services/batch/swap.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

from services.batch.domain import DocumentPair, check_slot

Pairs = Tuple[DocumentPair, ...]


@dataclass(frozen=True)
class SlotRef:
    doc_id: str
    slot: str

    def normalized(self) -> "SlotRef":
        return SlotRef(doc_id=self.doc_id, slot=check_slot(self.slot))


def _index_of(pairs: Pairs, doc_id: str) -> int:
    for i, p in enumerate(pairs):
        if p.doc_id == doc_id:
            return i
    raise KeyError(doc_id)


def swap_slots(pairs: Pairs, source: SlotRef, target: SlotRef) -> Pairs:
    """
    Exchange image buffer and pending rotation between two slots, inside one
    pair or across two. Identification/match state is left alone; re-running
    OCR after a swap is the operator's call.

    Returns `pairs` itself when source == target.
    """
    source, target = source.normalized(), target.normalized()
    if source == target:
        return pairs

    si = _index_of(pairs, source.doc_id)
    ti = _index_of(pairs, target.doc_id)
    src_img_f, src_rot_f = DocumentPair.slot_fields(source.slot)
    tgt_img_f, tgt_rot_f = DocumentPair.slot_fields(target.slot)

    # Read both sides before writing either.
    src_img = getattr(pairs[si], src_img_f)
    src_rot = getattr(pairs[si], src_rot_f)
    tgt_img = getattr(pairs[ti], tgt_img_f)
    tgt_rot = getattr(pairs[ti], tgt_rot_f)

    out = list(pairs)
    if si == ti:
        out[si] = replace(
            pairs[si],
            **{src_img_f: tgt_img, src_rot_f: tgt_rot, tgt_img_f: src_img, tgt_rot_f: src_rot},
        )
    else:
        out[si] = replace(pairs[si], **{src_img_f: tgt_img, src_rot_f: tgt_rot})
        out[ti] = replace(pairs[ti], **{tgt_img_f: src_img, tgt_rot_f: src_rot})
    return tuple(out)

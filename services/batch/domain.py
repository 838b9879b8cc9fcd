# services/batch/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


# Slot B is the identification surface ("Nomor: ..." is printed on it) and is
# what the save service calls the front. Slot A is transmitted as the back.
SLOT_A = "A"
SLOT_B = "B"
SLOTS = (SLOT_A, SLOT_B)
IDENTIFICATION_SLOT = SLOT_B
PAYLOAD_FRONT_SLOT = SLOT_B
PAYLOAD_BACK_SLOT = SLOT_A

APPROVED_RESULT = "sesuai"

# ocr_state
OCR_IDLE = "idle"
OCR_PROCESSING = "processing"
OCR_SUCCESS = "success"
OCR_ERROR = "error"

# match_state
MATCH_IDLE = "idle"
MATCH_LOADING = "loading"
MATCH_MATCHED = "matched"
MATCH_NOT_MATCHED = "not-matched"
MATCH_AMBIGUOUS = "ambiguous"
MATCH_ERROR = "error"

MATCH_STATES = (
    MATCH_IDLE,
    MATCH_LOADING,
    MATCH_MATCHED,
    MATCH_NOT_MATCHED,
    MATCH_AMBIGUOUS,
    MATCH_ERROR,
)

# batch status banner
STATUS_IDLE = "idle"
STATUS_PROCESSING = "processing"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def check_slot(slot: str) -> str:
    s = (slot or "").strip().upper()
    if s not in SLOTS:
        raise ValueError(f"Unknown slot: {slot!r}. Use 'A' or 'B'.")
    return s


@dataclass(frozen=True)
class RegistryRecord:
    match_result: str            # hasil_cek
    school_id: str               # npsn
    document_serial: str         # sn_bapp
    school_name: Optional[str] = None   # nama_sekolah
    issued_code: Optional[str] = None   # kode

    @property
    def is_approved(self) -> bool:
        return self.match_result == APPROVED_RESULT

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RegistryRecord":
        return cls(
            match_result=str(d.get("hasil_cek") or ""),
            school_id=str(d.get("npsn") or ""),
            document_serial=str(d.get("sn_bapp") or ""),
            school_name=d.get("nama_sekolah"),
            issued_code=d.get("kode"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasil_cek": self.match_result,
            "npsn": self.school_id,
            "sn_bapp": self.document_serial,
            "nama_sekolah": self.school_name,
            "kode": self.issued_code,
        }


@dataclass(frozen=True)
class DocumentPair:
    """
    One scanned physical document. Instances are never mutated; every change
    produces a new pair via dataclasses.replace, addressed by doc_id.
    """
    doc_id: str
    side_a: Optional[bytes] = None
    side_b: Optional[bytes] = None
    rotation_a: int = 0
    rotation_b: int = 0
    recognized_text: str = ""
    identifier: Optional[str] = None
    display_name: str = ""
    ocr_state: str = OCR_IDLE
    match_state: str = MATCH_IDLE
    candidates: Tuple[RegistryRecord, ...] = ()
    selected_record: Optional[RegistryRecord] = None
    is_saving: bool = False
    is_saved: bool = False
    is_rotating: bool = False
    message: str = ""

    def image(self, slot: str) -> Optional[bytes]:
        return self.side_a if check_slot(slot) == SLOT_A else self.side_b

    def rotation(self, slot: str) -> int:
        return self.rotation_a if check_slot(slot) == SLOT_A else self.rotation_b

    @staticmethod
    def slot_fields(slot: str) -> Tuple[str, str]:
        """Names of the (image, rotation) fields backing a slot."""
        if check_slot(slot) == SLOT_A:
            return "side_a", "rotation_a"
        return "side_b", "rotation_b"


@dataclass(frozen=True)
class BatchStatus:
    kind: str = STATUS_IDLE
    message: str = ""


@dataclass(frozen=True)
class BatchSnapshot:
    pairs: Tuple[DocumentPair, ...] = ()
    status: BatchStatus = field(default_factory=BatchStatus)

    def __len__(self) -> int:
        return len(self.pairs)

    def get(self, doc_id: str) -> Optional[DocumentPair]:
        for p in self.pairs:
            if p.doc_id == doc_id:
                return p
        return None

    def position(self, doc_id: str) -> Optional[int]:
        for i, p in enumerate(self.pairs):
            if p.doc_id == doc_id:
                return i
        return None

    def summary(self) -> Dict[str, int]:
        counts = {s: 0 for s in MATCH_STATES}
        for p in self.pairs:
            counts[p.match_state] = counts.get(p.match_state, 0) + 1
        counts["total"] = len(self.pairs)
        counts["saved"] = sum(1 for p in self.pairs if p.is_saved)
        return counts

import threading
from typing import Dict, List

import cv2
import numpy as np
from paddleocr import PaddleOCR

from services.imaging.transform import decode_bgr


class PageOCR:
    """Full-page PaddleOCR, one engine per language, created on first use."""

    def __init__(self, lang: str = "id"):
        self.default_lang = lang
        self._engines: Dict[str, PaddleOCR] = {}
        self._lock = threading.Lock()

    def _engine(self, lang: str) -> PaddleOCR:
        with self._lock:
            if lang not in self._engines:
                self._engines[lang] = PaddleOCR(use_angle_cls=True, lang=lang, show_log=False)
            return self._engines[lang]

    def _preprocess(self, img: np.ndarray) -> np.ndarray:
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        enhanced = clahe.apply(gray)
        return cv2.cvtColor(enhanced, cv2.COLOR_GRAY2BGR)

    def recognize(self, image: bytes, lang: str = "") -> str:
        img = self._preprocess(decode_bgr(image))
        ocr_out = self._engine(lang or self.default_lang).ocr(img, cls=True)

        lines: List[str] = []
        if ocr_out and ocr_out[0]:
            lines = [line[1][0] for line in ocr_out[0]]
        return "\n".join(lines)

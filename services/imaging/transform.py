# services/imaging/transform.py
from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps
from starlette.concurrency import run_in_threadpool

from services.batch.domain import PAYLOAD_BACK_SLOT, PAYLOAD_FRONT_SLOT, DocumentPair

DEFAULT_JPEG_QUALITY = 90

_CV2_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class ImageDecodeError(ValueError):
    """Buffer is not a decodable image."""


def normalize_rotation(degrees: int) -> int:
    d = int(degrees)
    if d % 90 != 0:
        raise ValueError(f"Rotation must be a multiple of 90, got {degrees}")
    return d % 360


def decode_image_with_exif(contents: bytes) -> np.ndarray:
    img_pil = Image.open(BytesIO(contents))
    img_pil = ImageOps.exif_transpose(img_pil)
    img_rgb = np.array(img_pil.convert("RGB"))
    return cv2.cvtColor(img_rgb, cv2.COLOR_RGB2BGR)


def decode_bgr(contents: bytes) -> np.ndarray:
    try:
        img = decode_image_with_exif(contents)
    except Exception:
        img = cv2.imdecode(np.frombuffer(contents, np.uint8), cv2.IMREAD_COLOR)

    if img is None:
        raise ImageDecodeError("Could not decode image.")
    return img


def encode_jpeg(img_bgr: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    ok, buf = cv2.imencode(".jpg", img_bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("JPEG encoding failed.")
    return buf.tobytes()


def image_size(contents: bytes) -> Tuple[int, int]:
    """(width, height) of an encoded image."""
    h, w = decode_bgr(contents).shape[:2]
    return w, h


def rotate_image(contents: bytes, degrees: int, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """
    Rotate clockwise about the center into a canvas sized for the result
    (width/height swapped for 90/270) and re-encode as JPEG.
    0 degrees returns the input object untouched, with no re-encode.
    """
    d = normalize_rotation(degrees)
    if d == 0:
        return contents

    img = decode_bgr(contents)
    return encode_jpeg(cv2.rotate(img, _CV2_ROTATIONS[d]), quality)


async def rotate_image_async(contents: bytes, degrees: int, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    if normalize_rotation(degrees) == 0:
        return contents
    return await run_in_threadpool(rotate_image, contents, degrees, quality)


async def bake_pending(pair: DocumentPair, quality: int = DEFAULT_JPEG_QUALITY) -> Tuple[Optional[bytes], Optional[bytes]]:
    """
    Apply outstanding pending rotations. Returns (front, back) in payload
    order, i.e. slot B first.
    """
    out = []
    for slot in (PAYLOAD_FRONT_SLOT, PAYLOAD_BACK_SLOT):
        img = pair.image(slot)
        if img is None:
            out.append(None)
            continue
        out.append(await rotate_image_async(img, pair.rotation(slot), quality))
    return out[0], out[1]


def to_data_url(contents: Optional[bytes], mime: str = "image/jpeg") -> str:
    if not contents:
        return ""
    return f"data:{mime};base64," + base64.b64encode(contents).decode("ascii")


def from_data_url(value: Optional[str]) -> Optional[bytes]:
    """Accepts 'data:<mime>;base64,<...>' or bare base64. Empty -> None."""
    if not value:
        return None
    s = value.strip()
    if s.startswith("data:"):
        _, _, s = s.partition(",")
    try:
        return base64.b64decode(s, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Invalid base64 image: {e}") from e

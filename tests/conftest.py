from __future__ import annotations

import cv2
import numpy as np
import pytest


@pytest.fixture
def anyio_backend():
    # trio is not installed
    return "asyncio"


@pytest.fixture
def make_jpeg():
    """Factory for small in-memory JPEGs with a left/right split so orientation is visible."""
    def _make(width: int = 40, height: int = 20, value: int = 255) -> bytes:
        img = np.zeros((height, width, 3), dtype=np.uint8)
        img[:, : width // 2] = value
        ok, buf = cv2.imencode(".jpg", img)
        assert ok
        return buf.tobytes()

    return _make

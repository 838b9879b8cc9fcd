# services/extraction/identifier.py
from __future__ import annotations

import re
from typing import Any, Optional


# "Nomor" label, a mandatory colon, then the first alphanumeric run after any
# punctuation. Case-insensitive throughout, the captured run included.
_IDENTIFIER_RE = re.compile(r"Nomor\s*:\s*[^A-Z0-9]*([A-Z0-9]+)", re.IGNORECASE)

PLACEHOLDER_TEMPLATE = "Document #{n}"


def _safe_str(x: Any) -> str:
    if x is None:
        return ""
    if isinstance(x, str):
        return x
    return str(x)


def extract_identifier(text: Any) -> Optional[str]:
    """
    Pull the BAPP serial out of raw OCR text.

    Examples:
      - 'Nomor: ABC123'         -> 'ABC123'
      - 'NOMOR :  - ABC123 ...' -> 'ABC123'
      - 'no label here'         -> None

    Returns None when nothing matches; callers branch on that.
    """
    s = _safe_str(text)
    if not s:
        return None

    m = _IDENTIFIER_RE.search(s)
    return m.group(1) if m else None


def placeholder_name(position: int) -> str:
    """Display name used when no identifier was found (1-based position)."""
    return PLACEHOLDER_TEMPLATE.format(n=position)

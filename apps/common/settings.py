# apps/common/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def _env(key: str) -> Optional[str]:
    v = os.getenv(key)
    return v.strip() if isinstance(v, str) and v.strip() else None


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppSettings:
    scanner_url: str
    approval_url: str
    save_url: str
    use_mock: bool = False
    ocr_lang: str = "id"
    jpeg_quality: int = 90
    http_timeout_s: float = 15.0
    log_level: str = "INFO"


def load_settings(config_path: Optional[str] = None) -> AppSettings:
    """
    Resolution order (highest -> lowest):
      1) Explicit function argument
      2) BAPP_CONFIG_PATH env var
      3) config/app.yaml
    Individual fields can be overridden via env vars:
      - BAPP_SCANNER_URL
      - BAPP_APPROVAL_URL
      - BAPP_SAVE_URL
      - BAPP_USE_MOCK
      - BAPP_OCR_LANG
      - BAPP_JPEG_QUALITY
      - BAPP_HTTP_TIMEOUT_S
      - BAPP_LOG_LEVEL
    """
    cfg_path = (
        Path(config_path)
        if config_path
        else Path(_env("BAPP_CONFIG_PATH") or "config/app.yaml")
    )
    cfg = _read_yaml(cfg_path)

    def pick(key: str, default: Any = None) -> Any:
        v = _env(f"BAPP_{key.upper()}")
        if v is not None:
            return v
        v = cfg.get(key)
        return default if v is None else v

    scanner_url = pick("scanner_url")
    approval_url = pick("approval_url")
    save_url = pick("save_url")
    use_mock = _as_bool(pick("use_mock", False))

    missing = []
    if not approval_url:
        missing.append("approval_url / BAPP_APPROVAL_URL")
    if not save_url:
        missing.append("save_url / BAPP_SAVE_URL")
    if not scanner_url and not use_mock:
        missing.append("scanner_url / BAPP_SCANNER_URL")

    if missing:
        raise ValueError(
            "Missing required configuration: " + ", ".join(missing) +
            f". Config file used: {cfg_path}"
        )

    try:
        jpeg_quality = int(pick("jpeg_quality", 90))
        http_timeout_s = float(pick("http_timeout_s", 15.0))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid numeric setting in {cfg_path}: {e}") from e

    if not 1 <= jpeg_quality <= 100:
        raise ValueError(f"jpeg_quality must be within 1..100, got {jpeg_quality}")

    return AppSettings(
        scanner_url=str(scanner_url or ""),
        approval_url=str(approval_url),
        save_url=str(save_url),
        use_mock=use_mock,
        ocr_lang=str(pick("ocr_lang", "id")),
        jpeg_quality=jpeg_quality,
        http_timeout_s=http_timeout_s,
        log_level=str(pick("log_level", "INFO")).upper(),
    )

# apps/api_gateway/main.py
from __future__ import annotations

import logging

from apps.api_gateway.app_factory import create_app
from apps.common.settings import load_settings
from services.batch.controller import DocumentPipelineController
from services.batch.orchestrator import BatchOrchestrator
from services.batch.store import BatchStore
from services.ingestion.scanner import ScannerBridge
from services.ocr_paddle.page_ocr import PageOCR
from services.records.client import RecordsClient
from services.registry.resolver import RegistryResolver

SETTINGS = load_settings()

logging.basicConfig(
    level=SETTINGS.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

store = BatchStore()
records = RecordsClient(base_url=SETTINGS.save_url, timeout_s=SETTINGS.http_timeout_s)
scanner = ScannerBridge(
    base_url=SETTINGS.scanner_url,
    mock_url=SETTINGS.save_url,
    use_mock=SETTINGS.use_mock,
)

controller = DocumentPipelineController(
    store=store,
    ocr=PageOCR(lang=SETTINGS.ocr_lang),
    resolver=RegistryResolver(base_url=SETTINGS.approval_url, timeout_s=SETTINGS.http_timeout_s),
    lang=SETTINGS.ocr_lang,
    jpeg_quality=SETTINGS.jpeg_quality,
)

orchestrator = BatchOrchestrator(
    store=store,
    controller=controller,
    scanner=scanner,
    records=records,
    jpeg_quality=SETTINGS.jpeg_quality,
)

app = create_app(orchestrator=orchestrator, records=records)

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from services.batch.controller import DocumentNotFound
from services.batch.domain import SLOTS, BatchSnapshot, DocumentPair, RegistryRecord, check_slot
from services.batch.orchestrator import (
    ALREADY_SAVED,
    FAILED,
    REJECTED_BUSY,
    BatchOrchestrator,
)
from services.batch.swap import SlotRef
from services.ingestion.scanner import ScannerError
from services.records.client import RecordsClient, RecordsServiceError, document_filename


class SearchBody(BaseModel):
    key: Optional[str] = None
    use_secondary: bool = False


class SelectBody(BaseModel):
    index: int


class RenameBody(BaseModel):
    name: str


class RotateBody(BaseModel):
    slot: str
    deferred: bool = False


class SlotBody(BaseModel):
    doc_id: str
    slot: str


class SwapBody(BaseModel):
    source: SlotBody
    target: SlotBody


def _record_json(rec: Optional[RegistryRecord]) -> Optional[Dict[str, Any]]:
    if rec is None:
        return None
    return {**rec.to_dict(), "is_approved": rec.is_approved}


def pair_to_json(pair: DocumentPair, position: int) -> Dict[str, Any]:
    """Image bytes stay server-side; fetch them via /documents/{id}/image/{slot}."""
    return {
        "doc_id": pair.doc_id,
        "position": position,
        "display_name": pair.display_name,
        "identifier": pair.identifier,
        "recognized_text": pair.recognized_text,
        "ocr_state": pair.ocr_state,
        "match_state": pair.match_state,
        "candidates": [_record_json(c) for c in pair.candidates],
        "selected_record": _record_json(pair.selected_record),
        "slots": {
            slot: {
                "has_image": pair.image(slot) is not None,
                "bytes": len(pair.image(slot) or b""),
                "rotation": pair.rotation(slot),
            }
            for slot in SLOTS
        },
        "is_saving": pair.is_saving,
        "is_saved": pair.is_saved,
        "is_rotating": pair.is_rotating,
        "message": pair.message,
    }


def snapshot_to_json(snap: BatchSnapshot) -> Dict[str, Any]:
    return {
        "status": {"kind": snap.status.kind, "message": snap.status.message},
        "summary": snap.summary(),
        "documents": [pair_to_json(p, i) for i, p in enumerate(snap.pairs)],
    }


def create_documents_router(*, orchestrator: BatchOrchestrator, records: Optional[RecordsClient] = None) -> APIRouter:
    router = APIRouter()
    controller = orchestrator.controller

    def _document(doc_id: str) -> Dict[str, Any]:
        snap = orchestrator.snapshot
        pos = snap.position(doc_id)
        if pos is None:
            raise HTTPException(status_code=404, detail="document_not_found")
        return pair_to_json(snap.pairs[pos], pos)

    def _not_found(e: DocumentNotFound) -> HTTPException:
        return HTTPException(status_code=404, detail="document_not_found")

    # --- batch ---

    @router.get("/profiles")
    async def profiles():
        return {"profiles": await orchestrator.list_profiles()}

    @router.post("/scan")
    async def scan(background_tasks: BackgroundTasks, profile: str = Query("")):
        try:
            snap = await orchestrator.acquire(profile)
        except ScannerError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        if snap.status.kind == "error":
            raise HTTPException(status_code=502, detail=snap.status.message)

        background_tasks.add_task(orchestrator.run_batch)
        return JSONResponse(status_code=202, content=snapshot_to_json(snap))

    @router.get("/batch")
    def batch():
        return snapshot_to_json(orchestrator.snapshot)

    @router.delete("/batch")
    def clear_batch():
        return snapshot_to_json(orchestrator.clear())

    # --- single document ---

    @router.get("/documents/{doc_id}")
    def document(doc_id: str):
        return _document(doc_id)

    @router.get("/documents/{doc_id}/image/{slot}")
    def document_image(doc_id: str, slot: str):
        try:
            pair = controller.require(doc_id)
            image = pair.image(check_slot(slot))
        except DocumentNotFound as e:
            raise _not_found(e) from e
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        if image is None:
            raise HTTPException(status_code=404, detail="slot_empty")
        return Response(content=image, media_type="image/jpeg")

    @router.delete("/documents/{doc_id}")
    def delete_document(doc_id: str):
        if not orchestrator.remove(doc_id):
            raise HTTPException(status_code=404, detail="document_not_found")
        return {"deleted": doc_id}

    @router.post("/documents/{doc_id}/retry")
    async def retry(doc_id: str):
        try:
            await controller.retry(doc_id)
        except DocumentNotFound as e:
            raise _not_found(e) from e
        return _document(doc_id)

    @router.post("/documents/{doc_id}/search")
    async def search(doc_id: str, body: SearchBody):
        try:
            await controller.resolve(doc_id, key=body.key, use_secondary=body.use_secondary)
        except DocumentNotFound as e:
            raise _not_found(e) from e
        return _document(doc_id)

    @router.post("/documents/{doc_id}/select")
    def select(doc_id: str, body: SelectBody):
        try:
            controller.select_candidate(doc_id, body.index)
        except DocumentNotFound as e:
            raise _not_found(e) from e
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return _document(doc_id)

    @router.put("/documents/{doc_id}/name")
    def rename(doc_id: str, body: RenameBody):
        try:
            controller.rename(doc_id, body.name)
        except DocumentNotFound as e:
            raise _not_found(e) from e
        return _document(doc_id)

    @router.post("/documents/{doc_id}/rotate")
    async def rotate(doc_id: str, body: RotateBody):
        try:
            if body.deferred:
                controller.turn_pending(doc_id, body.slot)
            else:
                await controller.rotate(doc_id, body.slot)
        except DocumentNotFound as e:
            raise _not_found(e) from e
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return _document(doc_id)

    @router.post("/swap")
    def swap(body: SwapBody):
        try:
            controller.swap(
                SlotRef(doc_id=body.source.doc_id, slot=body.source.slot),
                SlotRef(doc_id=body.target.doc_id, slot=body.target.slot),
            )
        except DocumentNotFound as e:
            raise _not_found(e) from e
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return snapshot_to_json(orchestrator.snapshot)

    @router.post("/documents/{doc_id}/save")
    async def save(doc_id: str):
        try:
            outcome = await orchestrator.save(doc_id)
        except DocumentNotFound as e:
            raise _not_found(e) from e
        except RecordsServiceError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e

        content = {"ok": outcome.ok, "reason": outcome.reason, "message": outcome.message}
        if outcome.ok:
            return {**content, "document": _document(doc_id)}
        if outcome.reason in (REJECTED_BUSY, ALREADY_SAVED):
            return JSONResponse(status_code=409, content=content)
        if outcome.reason == FAILED:
            return JSONResponse(status_code=502, content=content)
        return JSONResponse(status_code=422, content=content)

    # --- stored records (read side) ---

    @router.get("/records")
    async def list_records(npsn: str = Query("")):
        if records is None:
            raise HTTPException(status_code=503, detail="records_service_not_configured")
        try:
            rows = await records.list_records(npsn.strip())
        except RecordsServiceError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return {
            "count": len(rows),
            "records": [
                {
                    "id": r.id,
                    "doc_name": r.doc_name,
                    "npsn": r.npsn,
                    "sn_bapp": r.sn_bapp,
                    "hasil_cek": r.hasil_cek,
                    "created_at": r.created_at,
                    "url": records.document_url(r.path) if document_filename(r.path) else None,
                }
                for r in rows
            ],
        }

    @router.get("/stats")
    async def stats():
        if records is None:
            raise HTTPException(status_code=503, detail="records_service_not_configured")
        try:
            rows = await records.stats()
        except RecordsServiceError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return {
            "stats": [
                {
                    "termin": r.termin,
                    "total_schools": r.total_schools,
                    "scanned": r.scanned,
                    "logs_accepted": r.logs_accepted,
                    "not_scanned": r.not_scanned,
                }
                for r in rows
            ]
        }

    return router

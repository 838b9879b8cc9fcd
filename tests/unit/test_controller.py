from __future__ import annotations

import anyio
import pytest

from fakes import FakeOCR, FakeResolver, registry_row
from services.batch.controller import OCR_FAILURE_TEXT, DocumentNotFound, DocumentPipelineController
from services.batch.domain import DocumentPair, RegistryRecord
from services.batch.store import BatchStore
from services.batch.swap import SlotRef
from services.imaging.transform import image_size
from services.registry.resolver import Resolution, classify_records

pytestmark = pytest.mark.anyio


def _controller(pairs, ocr_texts=None, resolutions=None, hook=None):
    store = BatchStore()
    store.load(pairs)
    ctl = DocumentPipelineController(
        store=store,
        ocr=FakeOCR(ocr_texts or {}),
        resolver=FakeResolver(resolutions or {}, hook=hook),
    )
    return ctl, store


async def test_ocr_hit_resolves_to_matched():
    ctl, store = _controller(
        [DocumentPair(doc_id="d", side_a=b"A", side_b=b"B")],
        ocr_texts={b"B": "BERITA ACARA\nNomor: X1"},
        resolutions={"X1": classify_records([registry_row("X1")])},
    )
    p = await ctl.run_ocr("d")

    assert p.ocr_state == "success"
    assert p.display_name == "X1"
    assert p.match_state == "matched"
    assert p.selected_record.document_serial == "X1"
    assert ctl.ocr.calls == [b"B"]  # slot B is read, never slot A
    assert ctl.resolver.calls == [("X1", False)]


async def test_ocr_miss_sets_placeholder_and_skips_registry():
    ctl, store = _controller(
        [DocumentPair(doc_id="x"), DocumentPair(doc_id="d", side_b=b"B")],
        ocr_texts={b"B": "no label"},
    )
    p = await ctl.run_ocr("d")

    assert p.ocr_state == "error"
    assert p.match_state == "idle"
    assert p.display_name == "Document #2"
    assert ctl.resolver.calls == []


async def test_engine_exception_is_a_miss_with_sentinel_text():
    ctl, store = _controller(
        [DocumentPair(doc_id="d", side_b=b"B")],
        ocr_texts={b"B": RuntimeError("engine crashed")},
    )
    p = await ctl.run_ocr("d")
    assert p.ocr_state == "error"
    assert p.recognized_text == OCR_FAILURE_TEXT
    assert p.match_state == "idle"


async def test_missing_slot_b_is_a_miss():
    ctl, _ = _controller([DocumentPair(doc_id="d", side_a=b"A")])
    p = await ctl.run_ocr("d")
    assert p.ocr_state == "error"
    assert p.recognized_text == OCR_FAILURE_TEXT
    assert ctl.ocr.calls == []


async def test_resolver_crash_becomes_error_state():
    ctl, _ = _controller(
        [DocumentPair(doc_id="d", side_b=b"B")],
        ocr_texts={b"B": "Nomor: X1"},
        resolutions={"X1": RuntimeError("boom")},
    )
    p = await ctl.run_ocr("d")
    assert p.ocr_state == "success"
    assert p.match_state == "error"


async def test_retry_is_a_no_op_while_processing():
    ctl, store = _controller(
        [DocumentPair(doc_id="d", side_b=b"B", ocr_state="processing")],
        ocr_texts={b"B": "Nomor: X1"},
    )
    p = await ctl.retry("d")
    assert p.ocr_state == "processing"
    assert ctl.ocr.calls == []


async def test_retry_reruns_ocr_and_resolution():
    ctl, _ = _controller(
        [DocumentPair(doc_id="d", side_b=b"B", ocr_state="error", display_name="Document #1")],
        ocr_texts={b"B": "Nomor: X1"},
        resolutions={"X1": classify_records([registry_row("X1"), registry_row("X1", npsn="9")])},
    )
    p = await ctl.retry("d")
    assert p.ocr_state == "success"
    assert p.match_state == "ambiguous"
    assert len(p.candidates) == 2
    assert p.selected_record is None


async def test_manual_search_with_secondary_key():
    ctl, _ = _controller(
        [DocumentPair(doc_id="d", identifier="X1", match_state="not-matched", ocr_state="success")],
        resolutions={"20100001": classify_records([registry_row("X9", npsn="20100001")])},
    )
    p = await ctl.resolve("d", key=" 20100001 ", use_secondary=True)
    assert p.match_state == "matched"
    assert ctl.resolver.calls == [("20100001", True)]


async def test_manual_search_defaults_to_identifier_and_needs_one():
    ctl, _ = _controller([DocumentPair(doc_id="d"), DocumentPair(doc_id="e", identifier="X1")])
    p = await ctl.resolve("d")
    assert p.match_state == "idle"
    assert ctl.resolver.calls == []

    await ctl.resolve("e")
    assert ctl.resolver.calls == [("X1", False)]


async def test_manual_search_is_not_reentrant():
    ctl, _ = _controller([DocumentPair(doc_id="d", identifier="X1", match_state="loading")])
    p = await ctl.resolve("d")
    assert p.match_state == "loading"
    assert ctl.resolver.calls == []


async def test_select_candidate_promotes_even_unapproved():
    rows = [registry_row("X1"), registry_row("X1", hasil_cek="tidak sesuai", npsn="2")]
    ctl, _ = _controller(
        [DocumentPair(doc_id="d", side_b=b"B")],
        ocr_texts={b"B": "Nomor: X1"},
        resolutions={"X1": classify_records(rows)},
    )
    await ctl.run_ocr("d")
    p = ctl.select_candidate("d", 1)
    assert p.match_state == "matched"
    assert p.selected_record.match_result == "tidak sesuai"

    with pytest.raises(ValueError):
        ctl.select_candidate("d", 5)


async def test_select_record_directly():
    rec = RegistryRecord(match_result="sesuai", school_id="1", document_serial="X1")
    ctl, _ = _controller([DocumentPair(doc_id="d", match_state="not-matched")])
    p = ctl.select_candidate("d", rec)
    assert p.selected_record is rec
    assert p.candidates == (rec,)


async def test_picking_from_ambiguous_list_keeps_only_the_pick():
    ctl, _ = _controller(
        [DocumentPair(doc_id="d", side_b=b"B")],
        ocr_texts={b"B": "Nomor: X1"},
        resolutions={"X1": classify_records([registry_row("X1"), registry_row("X1", npsn="9")])},
    )
    await ctl.run_ocr("d")

    p = ctl.select_candidate("d", 1)

    assert p.match_state == "matched"
    assert p.selected_record.school_id == "9"
    assert len(p.candidates) == 1


async def test_rename_matched_document_goes_idle():
    ctl, _ = _controller(
        [DocumentPair(doc_id="d", side_b=b"B")],
        ocr_texts={b"B": "Nomor: X1"},
        resolutions={"X1": classify_records([registry_row("X1")])},
    )
    await ctl.run_ocr("d")
    p = ctl.rename("d", "X2")
    assert p.match_state == "idle"
    assert p.candidates == ()
    assert p.selected_record is None
    assert p.identifier == "X2"


async def test_unknown_document_raises():
    ctl, _ = _controller([])
    with pytest.raises(DocumentNotFound) as exc:
        ctl.rename("nope", "x")
    assert str(exc.value) == "Document nope is not in the current batch"
    assert exc.value.doc_id == "nope"
    with pytest.raises(DocumentNotFound):
        await ctl.retry("nope")


async def test_result_for_deleted_document_is_discarded():
    store_ref = {}

    async def delete_during_lookup(identifier):
        store_ref["store"].remove("d")

    ctl, store = _controller(
        [DocumentPair(doc_id="d", side_b=b"B"), DocumentPair(doc_id="e")],
        ocr_texts={b"B": "Nomor: X1"},
        resolutions={"X1": classify_records([registry_row("X1")])},
        hook=delete_during_lookup,
    )
    store_ref["store"] = store

    assert await ctl.run_ocr("d") is None
    assert [p.doc_id for p in store.snapshot.pairs] == ["e"]


async def test_interactive_rotate_bakes_and_resets_pending(make_jpeg):
    img = make_jpeg(40, 20)
    ctl, _ = _controller([DocumentPair(doc_id="d", side_a=img, rotation_a=90)])
    p = await ctl.rotate("d", "A")
    # pending 90 + one more quarter turn = 180, baked
    assert image_size(p.side_a) == (40, 20)
    assert p.side_a != img
    assert p.rotation_a == 0
    assert not p.is_rotating

    p = await ctl.rotate("d", "a")
    assert image_size(p.side_a) == (20, 40)


async def test_rotate_empty_slot_is_a_no_op():
    ctl, _ = _controller([DocumentPair(doc_id="d", side_a=b"A")])
    p = await ctl.rotate("d", "B")
    assert p.side_b is None and not p.is_rotating


async def test_rotate_undecodable_image_reports_and_recovers():
    ctl, _ = _controller([DocumentPair(doc_id="d", side_a=b"not an image")])
    p = await ctl.rotate("d", "A")
    assert not p.is_rotating
    assert p.side_a == b"not an image"
    assert "Rotation failed" in p.message


async def test_turn_pending_does_not_touch_buffer():
    ctl, _ = _controller([DocumentPair(doc_id="d", side_b=b"B", rotation_b=270)])
    p = ctl.turn_pending("d", "B")
    assert p.rotation_b == 0
    assert p.side_b == b"B"


async def test_swap_through_controller_keeps_match_state():
    rec = RegistryRecord(match_result="sesuai", school_id="1", document_serial="X1")
    ctl, store = _controller([
        DocumentPair(doc_id="d0", side_a=b"a0", side_b=b"b0", match_state="matched",
                     candidates=(rec,), selected_record=rec),
        DocumentPair(doc_id="d1", side_a=b"a1", side_b=b"b1"),
    ])
    ctl.swap(SlotRef("d0", "B"), SlotRef("d1", "A"))
    d0, d1 = store.snapshot.pairs
    assert d0.side_b == b"a1" and d1.side_a == b"b0"
    assert d0.match_state == "matched"

    with pytest.raises(DocumentNotFound):
        ctl.swap(SlotRef("d0", "A"), SlotRef("missing", "A"))


async def test_concurrent_documents_do_not_lose_updates():
    gate = anyio.Event()

    async def slow_for_first(identifier):
        if identifier == "X1":
            await gate.wait()

    ctl, store = _controller(
        [DocumentPair(doc_id="d", side_b=b"B1"), DocumentPair(doc_id="e", side_b=b"B2")],
        ocr_texts={b"B1": "Nomor: X1", b"B2": "Nomor: X2"},
        resolutions={
            "X1": classify_records([registry_row("X1")]),
            "X2": Resolution(state="not-matched"),
        },
        hook=slow_for_first,
    )

    async with anyio.create_task_group() as tg:
        tg.start_soon(ctl.run_ocr, "d")
        tg.start_soon(ctl.run_ocr, "e")
        # let "e" finish first, then release "d"
        while store.get("e").match_state != "not-matched":
            await anyio.sleep(0.01)
        gate.set()

    d, e = store.snapshot.pairs
    assert d.match_state == "matched"
    assert e.match_state == "not-matched"
    assert (d.display_name, e.display_name) == ("X1", "X2")

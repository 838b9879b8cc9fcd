from __future__ import annotations

import pytest
import requests

from fakes import FakeResponse, FakeSession, registry_row
from services.registry.resolver import RegistryResolver, classify_records


def _resolver(route) -> tuple:
    session = FakeSession({"/is-approved": route})
    return RegistryResolver(base_url="http://registry/api/", session=session, timeout_s=1), session


def test_classify_zero_one_many():
    none = classify_records([])
    assert none.state == "not-matched"
    assert none.candidates == () and none.selected is None

    one = classify_records([registry_row("X1")])
    assert one.state == "matched"
    assert len(one.candidates) == 1
    assert one.selected is one.candidates[0]
    assert one.selected.document_serial == "X1"

    many = classify_records([registry_row("X1"), registry_row("X1", npsn="2")])
    assert many.state == "ambiguous"
    assert len(many.candidates) == 2
    assert many.selected is None


def test_primary_lookup_uses_no_bapp_param():
    resolver, session = _resolver(FakeResponse(body={"data": [registry_row("X1")]}))
    res = resolver.resolve_sync("X1")

    assert res.state == "matched"
    method, url, params = session.calls[0]
    assert url == "http://registry/api/is-approved"
    assert params == {"no_bapp": "X1"}


def test_secondary_lookup_uses_npsn_param():
    resolver, session = _resolver(FakeResponse(body={"data": []}))
    res = resolver.resolve_sync("20100001", use_secondary=True)

    assert res.state == "not-matched"
    assert res.used_secondary is True
    assert session.calls[0][2] == {"npsn": "20100001"}


@pytest.mark.parametrize("body", [{}, {"data": None}, {"message": "Success", "data": []}])
def test_missing_or_empty_data_is_not_matched(body):
    resolver, _ = _resolver(FakeResponse(body=body))
    assert resolver.resolve_sync("X1").state == "not-matched"


@pytest.mark.parametrize(
    "route",
    [
        FakeResponse(status_code=500, body={"data": []}),
        FakeResponse(body=ValueError("not json")),
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
        FakeResponse(body={"data": [{"npsn": "1"}]}),
        FakeResponse(body={"data": "oops"}),
    ],
)
def test_failures_classify_as_error_with_empty_set(route):
    resolver, _ = _resolver(route)
    res = resolver.resolve_sync("X1")
    assert res.state == "error"
    assert res.candidates == ()
    assert res.selected is None
    assert res.message


def test_blank_identifier_makes_no_request():
    resolver, session = _resolver(FakeResponse(body={"data": []}))
    assert resolver.resolve_sync("   ").state == "idle"
    assert session.calls == []


def test_optional_fields_are_carried():
    row = registry_row("X1", nama_sekolah="SDN 1 Contoh", kode="K-01")
    resolver, _ = _resolver(FakeResponse(body={"data": [row]}))
    rec = resolver.resolve_sync("X1").selected
    assert rec.school_name == "SDN 1 Contoh"
    assert rec.issued_code == "K-01"
    assert rec.is_approved


@pytest.mark.anyio
async def test_async_resolve_matches_sync():
    resolver, _ = _resolver(FakeResponse(body={"data": [registry_row("X1"), registry_row("X2")]}))
    res = await resolver.resolve("X1")
    assert res.state == "ambiguous"

"""Tests des implémentations de registre et de stockage."""

import json

import httpx
import pytest

from specimatch.config import SpecimenStoreError
from specimatch.matching.schema import CandidateSpecimen
from specimatch.stores import (
    HttpSpecimenRegistry,
    HttpSpecimenStore,
    InMemorySpecimenRegistry,
    InMemorySpecimenStore,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="http://lims.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_in_memory_registry_by_project() -> None:
    registry = InMemorySpecimenRegistry({"p1": [CandidateSpecimen(id=1, tube_id="T1")]})
    assert [c.id for c in await registry.get_candidates("p1")] == [1]
    assert await registry.get_candidates("p2") == []


@pytest.mark.asyncio
async def test_in_memory_registry_single_list() -> None:
    registry = InMemorySpecimenRegistry([CandidateSpecimen(id=1), CandidateSpecimen(id=2)])
    assert len(await registry.get_candidates("any")) == 2


@pytest.mark.asyncio
async def test_in_memory_store_merges_patches() -> None:
    """Le double fusionne les patchs successifs ; l'API REST remplace la colonne metadata entière."""
    store = InMemorySpecimenStore()
    await store.update_metadata("s1", {"Age": "40"})
    await store.update_metadata("s1", {"Site": "A"})
    await store.update_metadata("s2", {"Age": ""})
    assert store.metadata == {"s1": {"Age": "40", "Site": "A"}, "s2": {"Age": ""}}


@pytest.mark.asyncio
async def test_in_memory_store_unknown_specimen() -> None:
    store = InMemorySpecimenStore(known_ids=["s1", "s2"])
    await store.update_metadata("s1", {"Age": "40"})
    await store.update_metadata("s2", {"Age": "41"})
    with pytest.raises(SpecimenStoreError, match="not found"):
        await store.update_metadata("s9", {"Age": "1"})


@pytest.mark.asyncio
async def test_http_registry_list_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/projects/12/specimens"
        return httpx.Response(
            200,
            json=[
                {"id": "u1", "tube_id": "01_GEMM_001", "specimen_number": 5},
                {"id": "u2", "tube_id": None, "specimen_number": None},
            ],
        )

    async with _client(handler) as client:
        candidates = await HttpSpecimenRegistry(client=client).get_candidates(12)

    assert candidates == [
        CandidateSpecimen(id="u1", tube_id="01_GEMM_001", specimen_number="5"),
        CandidateSpecimen(id="u2", tube_id=None, specimen_number=None),
    ]


@pytest.mark.asyncio
async def test_http_registry_wrapped_body_camel_case() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"specimens": [{"id": 3, "tubeId": "T3", "specimenNumber": "S3"}]})

    async with _client(handler) as client:
        [candidate] = await HttpSpecimenRegistry(client=client).get_candidates("p")

    assert candidate.tube_id == "T3"
    assert candidate.specimen_number == "S3"


@pytest.mark.asyncio
async def test_http_registry_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "Access denied"})

    async with _client(handler) as client:
        with pytest.raises(SpecimenStoreError) as exc_info:
            await HttpSpecimenRegistry(client=client).get_candidates("p")

    assert exc_info.value.status_code == 403
    assert exc_info.value.payload == {"message": "Access denied"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"text": "<html>maintenance</html>"},
        {"json": {"specimens": "oops"}},
        {"json": [{"tubeId": "T1"}]},
        {"json": ["s1"]},
    ],
)
async def test_http_registry_malformed_body(body: dict) -> None:
    """Un corps 200 illisible devient une SpecimenStoreError, pas une exception brute."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, **body)

    async with _client(handler) as client:
        with pytest.raises(SpecimenStoreError, match="Réponse invalide"):
            await HttpSpecimenRegistry(client=client).get_candidates("p")


@pytest.mark.asyncio
async def test_http_store_put_metadata() -> None:
    seen: list[tuple[str, str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    async with _client(handler) as client:
        await HttpSpecimenStore(client=client).update_metadata("s1", {"Age": "40", "Notes": ""})

    assert seen == [("PUT", "/api/specimens/s1/metadata", {"metadata": {"Age": "40", "Notes": ""}})]


@pytest.mark.asyncio
async def test_http_store_error_payload_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="violates foreign key constraint")

    async with _client(handler) as client:
        with pytest.raises(SpecimenStoreError) as exc_info:
            await HttpSpecimenStore(client=client).update_metadata("s1", {})

    assert exc_info.value.payload == "violates foreign key constraint"
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_http_store_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(SpecimenStoreError, match="Erreur réseau"):
            await HttpSpecimenStore(client=client).update_metadata("s1", {})


@pytest.mark.asyncio
async def test_http_store_owns_client() -> None:
    store = HttpSpecimenStore("http://lims.test/", token="abc")
    assert store.client.headers["Authorization"] == "Bearer abc"
    await store.aclose()
    assert store.client.is_closed


def test_http_store_requires_url_or_client() -> None:
    with pytest.raises(ValueError):
        HttpSpecimenStore()

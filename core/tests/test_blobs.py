import httpx
import pytest
import respx

from core.blobs import (BlobIntegrityError, BlobNotFound, BlobUnavailable,
                        FileBlobStore, HttpBlobStore, MemoryBlobStore,
                        content_ref, digest_of, open_blob_store)

DATA = b"circuit artifact bytes"


def test_refs():
    ref = content_ref(DATA)
    assert ref.startswith("sha256:") and digest_of(ref) == ref[7:]
    assert digest_of("inference/program.json") is None
    assert digest_of("sha256:xyz") is None


def test_open_blob_store(tmp_path):
    assert isinstance(open_blob_store("memory://"), MemoryBlobStore)
    assert isinstance(open_blob_store(f"file://{tmp_path}"), FileBlobStore)
    assert isinstance(open_blob_store(str(tmp_path)), FileBlobStore)
    assert isinstance(open_blob_store("https://gw.example/ipfs"), HttpBlobStore)


@pytest.mark.asyncio
async def test_memory_store_faults_and_integrity():
    store = MemoryBlobStore()
    ref = await store.store(DATA)
    assert ref in store and await store.fetch(ref) == DATA
    assert store.fetch_counts[ref] == 1

    store.fail_next(1)
    with pytest.raises(BlobUnavailable):
        await store.fetch(ref)
    assert await store.fetch(ref) == DATA

    with pytest.raises(BlobNotFound):
        await store.fetch(content_ref(b"other"))

    # an opaque key is trusted as-is; a content ref is checked
    store.put(b"tampered", ref=content_ref(b"original"))
    with pytest.raises(BlobIntegrityError):
        await store.fetch(content_ref(b"original"))
    store.put(b"anything", ref="keys/vk.json")
    assert await store.fetch("keys/vk.json") == b"anything"


@pytest.mark.asyncio
async def test_file_store(tmp_path):
    store = FileBlobStore(tmp_path)
    ref = await store.store(DATA)
    hx = digest_of(ref)
    assert (tmp_path / hx[:2] / hx).read_bytes() == DATA
    assert await store.fetch(ref) == DATA

    (tmp_path / "keys").mkdir()
    (tmp_path / "keys" / "vk.json").write_bytes(b"{}")
    assert await store.fetch("keys/vk.json") == b"{}"

    with pytest.raises(BlobNotFound):
        await store.fetch("../outside")
    with pytest.raises(BlobNotFound):
        await store.fetch(content_ref(b"missing"))

    (tmp_path / hx[:2] / hx).write_bytes(b"corrupted")
    with pytest.raises(BlobIntegrityError):
        await store.fetch(ref)


@pytest.mark.asyncio
async def test_http_store():
    ref = content_ref(DATA)
    with respx.mock(base_url="https://gw.example") as router:
        router.get(f"/blobs/{ref}").mock(return_value=httpx.Response(200, content=DATA))
        router.get("/blobs/sha256:" + "00" * 32).mock(return_value=httpx.Response(404))
        router.get("/blobs/flaky").mock(return_value=httpx.Response(502))
        router.get("/blobs/down").mock(side_effect=httpx.ConnectError("refused"))
        upload = router.post("/blobs").mock(return_value=httpx.Response(200, json={"ref": ref}))

        async with HttpBlobStore("https://gw.example/") as store:
            assert await store.fetch(ref) == DATA
            with pytest.raises(BlobNotFound):
                await store.fetch("sha256:" + "00" * 32)
            with pytest.raises(BlobUnavailable):
                await store.fetch("flaky")
            with pytest.raises(BlobUnavailable):
                await store.fetch("down")
            assert await store.store(DATA) == ref

        assert upload.called
        assert upload.calls.last.request.content == DATA


@pytest.mark.asyncio
async def test_http_store_rejects_wrong_content():
    ref = content_ref(DATA)
    with respx.mock(base_url="https://gw.example") as router:
        router.get(f"/blobs/{ref}").mock(return_value=httpx.Response(200, content=b"not it"))
        router.post("/blobs").mock(return_value=httpx.Response(500))
        async with HttpBlobStore("https://gw.example") as store:
            with pytest.raises(BlobIntegrityError):
                await store.fetch(ref)
            with pytest.raises(BlobUnavailable):
                await store.store(DATA)

import os
import threading

import pytest

from podstream_backend.features.blobs import store as store_mod
from podstream_backend.features.blobs.store import BlobStore, is_valid_video_id
from podstream_backend.shared import ErrorCode


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


@pytest.mark.asyncio
async def test_put_then_get_returns_exact_payload(services) -> None:
    blobs: BlobStore = services["blobs"]
    payload = bytes(range(256)) * 64

    put = await blobs.put({"name": "Morning Show", "category": "news", "content_type": "video/mp4", "filename": "ep1.mp4"}, payload)
    assert put.ok, put.error
    assert is_valid_video_id(put.data)
    assert put.meta["size"] == len(payload)

    got = await blobs.get(put.data)
    assert got.ok
    assert got.data["payload"] == payload
    meta = got.data["metadata"]
    assert meta["contentType"] == "video/mp4"
    assert meta["name"] == "Morning Show"
    assert meta["filename"] == "ep1.mp4"
    assert meta["views"] == 0


@pytest.mark.asyncio
async def test_put_streams_async_chunks(services) -> None:
    blobs: BlobStore = services["blobs"]
    put = await blobs.put({"name": "Pod", "category": "tech", "content_type": "video/webm"}, _chunks(b"ab", b"", b"cd", b"ef"))
    assert put.ok

    path = (await blobs.blob_path(put.data)).data
    assert path.read_bytes() == b"abcdef"
    collected = b"".join([chunk async for chunk in blobs.iter_payload(put.data, chunk_size=2)])
    assert collected == b"abcdef"


@pytest.mark.asyncio
async def test_put_assigns_distinct_ids(services) -> None:
    blobs: BlobStore = services["blobs"]
    ids = set()
    for _ in range(5):
        res = await blobs.put({"name": "Same", "category": "same", "content_type": "video/mp4"}, b"same bytes")
        assert res.ok
        ids.add(res.data)
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_put_rejects_oversized_payload_and_leaves_no_files(services, tmp_path) -> None:
    blobs = BlobStore(services["db"], blob_dir=tmp_path / "small", max_bytes=4)

    res = await blobs.put({"name": "Big", "category": "x", "content_type": "video/mp4"}, _chunks(b"123", b"456"))
    assert not res.ok
    assert res.code == ErrorCode.INVALID_INPUT.value

    leftovers = [p for p in (tmp_path / "small").rglob("*") if p.is_file()]
    assert leftovers == []
    assert (await blobs.list()).data == []


@pytest.mark.asyncio
async def test_put_requires_name_and_category(services) -> None:
    blobs: BlobStore = services["blobs"]
    missing_name = await blobs.put({"name": " ", "category": "news", "content_type": "video/mp4"}, b"x")
    assert missing_name.code == ErrorCode.INVALID_INPUT.value
    missing_category = await blobs.put({"name": "Pod", "category": "", "content_type": "video/mp4"}, b"x")
    assert missing_category.code == ErrorCode.INVALID_INPUT.value


@pytest.mark.asyncio
async def test_put_removes_blob_when_row_insert_fails(services, monkeypatch) -> None:
    blobs: BlobStore = services["blobs"]
    db = services["db"]

    async def _fail_insert(_sql, _params=None, fetch=False):
        from podstream_backend.shared import Result

        return Result.Err(ErrorCode.STORAGE_FAILURE, "disk full")

    monkeypatch.setattr(db, "aexecute", _fail_insert)
    res = await blobs.put({"name": "Pod", "category": "news", "content_type": "video/mp4"}, b"payload")
    assert not res.ok
    assert res.code == ErrorCode.STORAGE_FAILURE.value
    assert [p for p in blobs.base_dir.rglob("*") if p.is_file()] == []


@pytest.mark.asyncio
async def test_get_unknown_id_is_not_found(services) -> None:
    blobs: BlobStore = services["blobs"]
    for vid in ("0" * 32, "not-an-id", ""):
        res = await blobs.get(vid)
        assert not res.ok
        assert res.code == ErrorCode.NOT_FOUND.value


@pytest.mark.asyncio
async def test_get_reports_storage_failure_when_blob_vanished(services) -> None:
    blobs: BlobStore = services["blobs"]
    put = await blobs.put({"name": "Pod", "category": "news", "content_type": "video/mp4"}, b"payload")
    (await blobs.blob_path(put.data)).data.unlink()

    res = await blobs.get(put.data)
    assert not res.ok
    assert res.code == ErrorCode.STORAGE_FAILURE.value


@pytest.mark.asyncio
async def test_list_filters_by_category_in_creation_order(services) -> None:
    blobs: BlobStore = services["blobs"]
    first = (await blobs.put({"name": "A", "category": "news", "content_type": "video/mp4"}, b"a")).data
    second = (await blobs.put({"name": "B", "category": "sports", "content_type": "video/mp4"}, b"b")).data
    third = (await blobs.put({"name": "C", "category": "news", "content_type": "video/mp4"}, b"c")).data

    everything = (await blobs.list()).data
    assert [v["id"] for v in everything] == [first, second, third]
    assert set(everything[0].keys()) == {"id", "name", "category"}

    news = (await blobs.list("news")).data
    assert news == [
        {"id": first, "name": "A", "category": "news"},
        {"id": third, "name": "C", "category": "news"},
    ]
    assert (await blobs.list("NEWS")).data == []
    assert (await blobs.list("unknown")).data == []


class _RecordingHandle:
    def __init__(self, inner, threads):
        self._inner = inner
        self._threads = threads

    def write(self, data):
        self._threads.append(("write", threading.get_ident()))
        return self._inner.write(data)

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def __enter__(self):
        self._inner.__enter__()
        return self

    def __exit__(self, *exc):
        return self._inner.__exit__(*exc)


@pytest.mark.asyncio
async def test_streaming_put_keeps_file_io_off_the_event_loop(services, monkeypatch) -> None:
    blobs: BlobStore = services["blobs"]
    loop_thread = threading.get_ident()
    threads = []
    real_fdopen = os.fdopen
    real_sync = store_mod._flush_and_sync
    real_replace = os.replace

    def _fdopen(fd, *args, **kwargs):
        return _RecordingHandle(real_fdopen(fd, *args, **kwargs), threads)

    def _sync(handle):
        threads.append(("fsync", threading.get_ident()))
        real_sync(handle)

    def _replace(src, dst):
        threads.append(("replace", threading.get_ident()))
        real_replace(src, dst)

    monkeypatch.setattr(store_mod.os, "fdopen", _fdopen)
    monkeypatch.setattr(store_mod, "_flush_and_sync", _sync)
    monkeypatch.setattr(store_mod.os, "replace", _replace)

    put = await blobs.put(
        {"name": "Long Show", "category": "news", "content_type": "video/mp4"},
        _chunks(b"a" * 1024, b"b" * 1024, b"c" * 1024),
    )
    monkeypatch.undo()
    assert put.ok, put.error

    assert [kind for kind, _ in threads] == ["write", "write", "write", "fsync", "replace"]
    assert all(ident != loop_thread for _, ident in threads)
    assert (await blobs.get(put.data)).data["payload"] == b"a" * 1024 + b"b" * 1024 + b"c" * 1024

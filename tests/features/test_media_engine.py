import pytest

from podstream_backend import MediaEngine
from podstream_backend.shared import ErrorCode


@pytest.mark.asyncio
async def test_upload_then_fetch_round_trip(engine: MediaEngine) -> None:
    payload = b"\x00\x00\x00\x18ftypmp42" + b"\xab" * 4096
    up = await engine.upload_video("Deep Dive", "science", "video/mp4", payload, filename="dive.mp4")
    assert up.ok

    fetched = await engine.fetch_video(up.data)
    assert fetched.ok
    assert fetched.data["payload"] == payload
    assert fetched.data["content_type"] == "video/mp4"
    assert fetched.data["filename"] == "dive.mp4"


@pytest.mark.asyncio
async def test_fetch_does_not_touch_counters(engine: MediaEngine) -> None:
    vid = (await engine.upload_video("Pod", "news", "video/mp4", b"x")).data
    before = (await engine.get_stats()).data
    for _ in range(3):
        assert (await engine.fetch_video(vid)).ok
    assert (await engine.get_stats()).data == before
    assert (await engine.catalog.get_video_info(vid)).data["views"] == 0


@pytest.mark.asyncio
async def test_fetch_unknown_video_is_not_found_and_stats_unchanged(engine: MediaEngine) -> None:
    before = (await engine.get_stats()).data
    res = await engine.fetch_video("1" * 32)
    assert not res.ok
    assert res.code == ErrorCode.NOT_FOUND.value
    assert (await engine.get_stats()).data == before


@pytest.mark.asyncio
async def test_record_view_returns_video_count_and_bumps_total(engine: MediaEngine) -> None:
    a = (await engine.upload_video("A", "news", "video/mp4", b"a")).data
    b = (await engine.upload_video("B", "news", "video/mp4", b"b")).data

    assert (await engine.record_view(a)).data == 1
    second = await engine.record_view(a)
    assert second.data == 2
    assert second.meta["total_views"] == 2
    assert (await engine.record_view(b)).data == 1
    assert (await engine.get_stats()).data["totalViews"] == 3


@pytest.mark.asyncio
async def test_list_videos_without_payloads(engine: MediaEngine) -> None:
    await engine.upload_video("A", "news", "video/mp4", b"a" * 100)
    await engine.upload_video("B", "sports", "video/webm", b"b" * 100)

    listing = (await engine.list_videos()).data
    assert [v["name"] for v in listing] == ["A", "B"]
    assert all(set(v) == {"id", "name", "category"} for v in listing)
    assert [v["name"] for v in (await engine.list_videos("sports")).data] == ["B"]


@pytest.mark.asyncio
async def test_fresh_engine_stats_are_zero(engine: MediaEngine) -> None:
    stats = await engine.get_stats()
    assert stats.ok
    assert stats.data == {"totalSignups": 0, "totalViews": 0, "signupHistory": []}


@pytest.mark.asyncio
async def test_account_lists_favorites(engine: MediaEngine) -> None:
    await engine.register_user("ada@example.com")
    vid = (await engine.upload_video("A", "news", "video/mp4", b"a")).data
    await engine.toggle_favorite("ada@example.com", vid)
    account = await engine.get_account("ada@example.com")
    assert account.data["favorites"] == [vid]

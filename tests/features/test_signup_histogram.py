import asyncio
import datetime

import pytest

from podstream_backend.features.histogram import SignupHistogram
from podstream_backend.shared import ErrorCode


@pytest.mark.asyncio
async def test_two_signups_same_day_share_one_bucket(engine, clock) -> None:
    assert (await engine.record_signup()).ok
    assert (await engine.record_signup()).ok

    stats = (await engine.get_stats()).data
    assert stats["totalSignups"] == 2
    assert stats["signupHistory"] == [{"date": "2026-03-14", "count": 2}]


@pytest.mark.asyncio
async def test_signups_on_two_days_make_two_buckets(engine, clock) -> None:
    assert (await engine.record_signup()).ok
    clock.day = datetime.date(2026, 3, 15)
    assert (await engine.record_signup()).ok

    stats = (await engine.get_stats()).data
    assert stats["totalSignups"] == 2
    assert stats["signupHistory"] == [
        {"date": "2026-03-14", "count": 1},
        {"date": "2026-03-15", "count": 1},
    ]


@pytest.mark.asyncio
async def test_history_is_date_ordered_regardless_of_insert_order(services) -> None:
    histogram: SignupHistogram = services["histogram"]
    for day in (datetime.date(2026, 5, 2), datetime.date(2025, 12, 31), datetime.date(2026, 1, 9)):
        assert (await histogram.record_signup(day)).ok

    history = (await histogram.history()).data
    assert [h["date"] for h in history] == ["2025-12-31", "2026-01-09", "2026-05-02"]


@pytest.mark.asyncio
async def test_concurrent_signups_on_one_day(engine) -> None:
    results = await asyncio.gather(*(engine.record_signup() for _ in range(40)))
    assert all(r.ok for r in results)

    stats = (await engine.get_stats()).data
    assert stats["totalSignups"] == 40
    assert stats["signupHistory"] == [{"date": "2026-03-14", "count": 40}]


@pytest.mark.asyncio
async def test_record_signup_returns_bucket_count(services) -> None:
    histogram: SignupHistogram = services["histogram"]
    day = datetime.date(2026, 7, 1)
    first = await histogram.record_signup(day)
    second = await histogram.record_signup(datetime.datetime(2026, 7, 1, 23, 59))
    assert first.data == 1 and first.meta["date"] == "2026-07-01"
    assert second.data == 2


@pytest.mark.asyncio
async def test_record_signup_rejects_non_dates(services) -> None:
    histogram: SignupHistogram = services["histogram"]
    res = await histogram.record_signup("2026-07-01")  # type: ignore[arg-type]
    assert res.code == ErrorCode.INVALID_INPUT.value


@pytest.mark.asyncio
async def test_failed_bucket_write_rolls_back_signup_counter(engine, monkeypatch) -> None:
    from podstream_backend.shared import Result

    async def _broken(_today=None):
        return Result.Err(ErrorCode.STORAGE_FAILURE, "bucket write failed")

    monkeypatch.setattr(engine.histogram, "record_signup", _broken)
    res = await engine.record_signup()
    assert not res.ok
    assert res.code == ErrorCode.STORAGE_FAILURE.value

    monkeypatch.undo()
    stats = (await engine.get_stats()).data
    assert stats["totalSignups"] == 0
    assert stats["signupHistory"] == []

import datetime
import sys

import pytest
import pytest_asyncio

from .repo_root import REPO_ROOT

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


class FixedClock:
    """Settable calendar clock for signup bucketing."""

    def __init__(self, day: datetime.date):
        self.day = day

    def __call__(self) -> datetime.date:
        return self.day


@pytest.fixture
def clock():
    return FixedClock(datetime.date(2026, 3, 14))


@pytest_asyncio.fixture
async def services(tmp_path, clock):
    from podstream_backend.deps import build_services

    db_path = str(tmp_path / "test_services.db")
    svc_res = await build_services(db_path, blob_dir=tmp_path / "blobs", clock=clock)
    assert svc_res.ok, svc_res.error
    svc = svc_res.data
    try:
        yield svc
    finally:
        await svc["db"].aclose()


@pytest_asyncio.fixture
async def engine(services):
    return services["engine"]

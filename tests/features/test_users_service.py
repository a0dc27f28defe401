import pytest

from podstream_backend.features.users import UsersService, normalize_user_id
from podstream_backend.shared import ErrorCode


def test_normalize_user_id() -> None:
    assert normalize_user_id("  Ada@Example.COM ") == "ada@example.com"
    assert normalize_user_id(None) == ""
    assert normalize_user_id("x" * 300) == ""
    assert normalize_user_id("bad\x00id") == ""


@pytest.mark.asyncio
async def test_create_and_get_hides_credential(services) -> None:
    users: UsersService = services["users"]
    created = await users.create("ada@example.com", "opaque-handle", "creator")
    assert created.ok
    assert created.data["role"] == "creator"

    account = await users.get("ADA@example.com")
    assert account.ok
    assert account.data["email"] == "ada@example.com"
    assert account.data["favorites"] == []
    assert "credential" not in account.data
    assert (await users.exists("ada@example.com")).data is True
    assert (await users.exists("bob@example.com")).data is False


@pytest.mark.asyncio
async def test_duplicate_user_is_conflict(services) -> None:
    users: UsersService = services["users"]
    assert (await users.create("ada@example.com")).ok
    dup = await users.create("Ada@Example.com")
    assert not dup.ok
    assert dup.code == ErrorCode.CONFLICT.value


@pytest.mark.asyncio
async def test_create_validates_input(services) -> None:
    users: UsersService = services["users"]
    assert (await users.create("")).code == ErrorCode.INVALID_INPUT.value
    assert (await users.create("ada@example.com", role="root")).code == ErrorCode.INVALID_INPUT.value
    assert (await users.create("ada@example.com", credential="x" * 5000)).code == ErrorCode.INVALID_INPUT.value


@pytest.mark.asyncio
async def test_register_user_records_signup(engine) -> None:
    res = await engine.register_user("ada@example.com", "h", "listener")
    assert res.ok
    stats = (await engine.get_stats()).data
    assert stats["totalSignups"] == 1
    assert stats["signupHistory"] == [{"date": "2026-03-14", "count": 1}]


@pytest.mark.asyncio
async def test_duplicate_registration_moves_no_counter(engine) -> None:
    assert (await engine.register_user("ada@example.com")).ok
    dup = await engine.register_user("ada@example.com")
    assert dup.code == ErrorCode.CONFLICT.value

    stats = (await engine.get_stats()).data
    assert stats["totalSignups"] == 1
    assert stats["signupHistory"] == [{"date": "2026-03-14", "count": 1}]

"""LinkStore behaviour against an in-process Redis."""

import pytest
import redis.asyncio as redis

from linkshortener.exceptions import ConflictError, InvalidInputError, NoOpError, NotFoundError
from linkshortener.schemas import ClickMetadata, LinkRecord
from linkshortener.store import LinkStore


def _race_on_read(monkeypatch: pytest.MonkeyPatch, client: redis.Redis, times: int = 1) -> list[int]:
    """Make the next `times` watched reads be followed by a concurrent click on the same key."""
    original_pipeline = client.pipeline
    raced: list[int] = []

    def racing_pipeline(*args, **kwargs):
        pipe = original_pipeline(*args, **kwargs)
        original_get = pipe.get

        async def get_then_race(key):
            value = await original_get(key)
            if value is not None and len(raced) < times:
                record = LinkRecord.model_validate_json(value)
                bumped = record.model_copy(update={"click_count": record.click_count + 1})
                await client.set(key, bumped.model_dump_json())
                raced.append(bumped.click_count)
            return value

        pipe.get = get_then_race
        return pipe

    monkeypatch.setattr(client, "pipeline", racing_pipeline)
    return raced


@pytest.mark.asyncio
async def test_create_then_get(store: LinkStore) -> None:
    created = await store.create("https://a.com", "abc123def45")

    fetched = await store.get("abc123def45")
    assert fetched is not None
    assert fetched.click_count == 0
    assert fetched.long_url == "https://a.com"
    assert fetched.created_at == created.created_at
    assert fetched.last_click_event_id is None


@pytest.mark.asyncio
async def test_get_unknown_returns_none(store: LinkStore) -> None:
    assert await store.get("nope") is None


@pytest.mark.asyncio
async def test_create_duplicate_conflicts_and_keeps_original(store: LinkStore) -> None:
    await store.create("https://a.com", "dup")

    with pytest.raises(ConflictError):
        await store.create("https://b.com", "dup")

    record = await store.get("dup")
    assert record is not None
    assert record.long_url == "https://a.com"


@pytest.mark.asyncio
async def test_create_rejects_invalid_url(store: LinkStore) -> None:
    with pytest.raises(InvalidInputError):
        await store.create("not a url", "code1")
    assert await store.get("code1") is None


@pytest.mark.asyncio
async def test_owner_requires_multi_tenant(public_store: LinkStore) -> None:
    with pytest.raises(InvalidInputError):
        await public_store.create("https://a.com", "code1", owner_id="alice")
    with pytest.raises(InvalidInputError):
        await public_store.list_by_owner("alice")


@pytest.mark.asyncio
async def test_list_by_owner(store: LinkStore) -> None:
    for code in ("a1", "a2", "a3"):
        await store.create(f"https://example.com/{code}", code, owner_id="alice")
    await store.create("https://example.com/b1", "b1", owner_id="bob")
    await store.create("https://example.com/p1", "p1")

    alice = await store.list_by_owner("alice")
    assert {record.short_code for record in alice} == {"a1", "a2", "a3"}
    assert all(record.owner_id == "alice" for record in alice)
    assert await store.list_by_owner("carol") == []


@pytest.mark.asyncio
async def test_list_by_owner_skips_unreadable_codes(store: LinkStore, redis_client: redis.Redis) -> None:
    await store.create("https://example.com/a1", "a1", owner_id="alice")
    await redis_client.sadd(store.owner_key("alice"), "not-yet-visible")

    alice = await store.list_by_owner("alice")
    assert [record.short_code for record in alice] == ["a1"]


@pytest.mark.asyncio
async def test_list_all(store: LinkStore) -> None:
    codes = {f"code{i}" for i in range(5)}
    for code in codes:
        await store.create(f"https://example.com/{code}", code)
    await store.increment_click("code0")

    records = await store.list_all()
    assert {record.short_code for record in records} == codes


@pytest.mark.asyncio
async def test_list_all_empty(store: LinkStore) -> None:
    assert await store.list_all() == []


@pytest.mark.asyncio
async def test_update_long_url(store: LinkStore) -> None:
    created = await store.create("https://a.com", "code1")
    await store.increment_click("code1")

    updated = await store.update_long_url("code1", "https://b.com")

    assert updated.long_url == "https://b.com"
    assert updated.created_at == created.created_at
    assert updated.click_count == 1
    assert await store.get("code1") == updated


@pytest.mark.asyncio
async def test_update_same_url_is_noop(store: LinkStore) -> None:
    await store.create("https://a.com", "code1")
    with pytest.raises(NoOpError, match="same as the current one"):
        await store.update_long_url("code1", "https://a.com")


@pytest.mark.asyncio
async def test_update_unknown_code(store: LinkStore) -> None:
    with pytest.raises(NotFoundError):
        await store.update_long_url("missing", "https://b.com")
    with pytest.raises(NotFoundError):
        await store.update_long_url("missing", "not a url")


@pytest.mark.asyncio
async def test_update_rejects_invalid_url(store: LinkStore) -> None:
    await store.create("https://a.com", "code1")
    with pytest.raises(InvalidInputError):
        await store.update_long_url("code1", "not a url")


@pytest.mark.asyncio
async def test_create_and_update_with_local_hosts(store: LinkStore) -> None:
    await store.create("http://localhost:3000/x", "code1")

    updated = await store.update_long_url("code1", "https://intranet/page")

    assert updated.long_url == "https://intranet/page"


@pytest.mark.asyncio
async def test_update_rereads_after_concurrent_click(
    store: LinkStore, redis_client: redis.Redis, monkeypatch: pytest.MonkeyPatch
) -> None:
    await store.create("https://a.com", "code1")
    raced = _race_on_read(monkeypatch, redis_client)

    updated = await store.update_long_url("code1", "https://b.com")

    assert raced == [1]
    assert updated.click_count == 1
    assert updated.long_url == "https://b.com"


@pytest.mark.asyncio
async def test_increment_click_writes_event_and_counter(store: LinkStore) -> None:
    await store.create("https://a.com", "code1")

    event = await store.increment_click("code1", ClickMetadata(ip_address="1.2.3.4", user_agent="curl", country="NL"))

    assert event.sequence_number == 1
    record = await store.get("code1")
    assert record is not None
    assert record.click_count == 1
    assert record.last_click_event_id == event.event_id == "code1:1"
    stored = await store.get_click_event("code1", 1)
    assert stored is not None
    assert stored.ip_address == "1.2.3.4"
    assert stored.user_agent == "curl"
    assert stored.country == "NL"


@pytest.mark.asyncio
async def test_increment_click_unknown_code(store: LinkStore) -> None:
    with pytest.raises(NotFoundError):
        await store.increment_click("missing")


@pytest.mark.asyncio
async def test_increment_click_conflicts_when_counter_moves(
    store: LinkStore, redis_client: redis.Redis, monkeypatch: pytest.MonkeyPatch
) -> None:
    await store.create("https://a.com", "code1")
    _race_on_read(monkeypatch, redis_client)

    with pytest.raises(ConflictError):
        await store.increment_click("code1")

    # The aborted transaction wrote nothing.
    assert await store.get_click_event("code1", 1) is None
    record = await store.get("code1")
    assert record is not None
    assert record.last_click_event_id is None


@pytest.mark.asyncio
async def test_list_click_events_in_sequence(store: LinkStore) -> None:
    await store.create("https://a.com", "code1")
    for agent in ("a", "b", "c"):
        await store.increment_click("code1", ClickMetadata(user_agent=agent))

    events = await store.list_click_events("code1")
    assert [event.sequence_number for event in events] == [1, 2, 3]
    assert [event.user_agent for event in events] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_list_click_events_unknown_code(store: LinkStore) -> None:
    with pytest.raises(NotFoundError):
        await store.list_click_events("missing")


def test_key_schema() -> None:
    assert LinkStore.link_key("abc") == "shortlinks:abc"
    assert LinkStore.click_key("abc", 7) == "analytics:abc:7"
    assert LinkStore.owner_key("alice") == "owners:alice"
    assert LinkStore.change_channel("abc") == "changes:shortlinks:abc"

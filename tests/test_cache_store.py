import asyncio
import json

from conftest import raw_post

from storysync.workflows.cache_store import CacheFamily, CacheStore, JsonFileStorage, LocalSnapshot, MemoryStorage
from storysync.workflows.errors import StorageError
from storysync.workflows.schema import coerce_post


class FailingStorage(MemoryStorage):
    def set_item(self, key, value):
        raise StorageError("quota exceeded")


def test_entry_is_served_until_ttl_then_evicted(store, clock):
    asyncio.run(store.set(CacheFamily.PAGES, "k", {"v": 1}))

    clock.advance(1800 - 0.001)
    assert asyncio.run(store.get(CacheFamily.PAGES, "k")) == {"v": 1}

    clock.advance(0.002)
    assert asyncio.run(store.get(CacheFamily.PAGES, "k")) is None
    assert store.storage.keys() == []


def test_families_expire_independently(store, clock):
    async def scenario():
        await store.set(CacheFamily.AVAILABILITY, "api", {"available": True})
        await store.set(CacheFamily.PAGES, "page", [1])
        await store.set(CacheFamily.SNAPSHOT, "snap", {"posts": []})
        clock.advance(301)
        return (
            await store.get(CacheFamily.AVAILABILITY, "api"),
            await store.get(CacheFamily.PAGES, "page"),
            await store.get(CacheFamily.SNAPSHOT, "snap"),
        )

    availability, page, snapshot = asyncio.run(scenario())

    assert availability is None
    assert page == [1]
    assert snapshot == {"posts": []}


def test_snapshot_family_never_expires(store, clock):
    asyncio.run(store.set(CacheFamily.SNAPSHOT, "snap", {"posts": []}))
    clock.advance(10 * 365 * 24 * 3600)

    assert asyncio.run(store.get(CacheFamily.SNAPSHOT, "snap")) == {"posts": []}


def test_write_failure_is_swallowed(clock, caplog):
    store = CacheStore(FailingStorage(), {CacheFamily.PAGES: 60}, clock=clock)

    ok = asyncio.run(store.set(CacheFamily.PAGES, "k", {"v": 1}))

    assert ok is False
    assert asyncio.run(store.get(CacheFamily.PAGES, "k")) is None
    assert "cache write failed" in caplog.text


def test_corrupt_entry_is_treated_as_absent_and_removed(store):
    store.storage.set_item("storysync:pages:bad", "{not json")

    assert asyncio.run(store.get(CacheFamily.PAGES, "bad")) is None
    assert store.storage.get_item("storysync:pages:bad") is None


def test_json_file_storage_persists_between_instances(tmp_path, clock):
    first = CacheStore(JsonFileStorage(tmp_path / "cache"), clock=clock)
    asyncio.run(first.set(CacheFamily.CONVERTED, "the-lighthouse", {"title": "The Lighthouse"}))

    second = CacheStore(JsonFileStorage(tmp_path / "cache"), clock=clock)

    assert asyncio.run(second.get(CacheFamily.CONVERTED, "the-lighthouse")) == {"title": "The Lighthouse"}
    files = list((tmp_path / "cache").glob("*.json"))
    assert len(files) == 1
    assert ":" not in files[0].name
    envelope = json.loads(files[0].read_text(encoding="utf-8"))
    assert envelope["family"] == "converted"


def test_json_file_storage_wraps_os_errors(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    storage = JsonFileStorage(blocker)

    try:
        storage.set_item("key", "value")
    except StorageError as exc:
        assert "write failed" in str(exc)
    else:
        raise AssertionError("expected StorageError")


def test_snapshot_merge_overwrites_by_id_and_sorts_newest_first(store):
    snapshot = LocalSnapshot(store)

    async def scenario():
        await snapshot.merge([coerce_post(raw_post(1, day=1)), coerce_post(raw_post(2, day=2))])
        updated = raw_post(1, day=1, title={"rendered": "Story 1 (revised)"})
        size = await snapshot.merge([coerce_post(updated), coerce_post(raw_post(3, day=3))])
        return size, await snapshot.records()

    size, records = asyncio.run(scenario())

    assert size == 3
    assert [r.id for r in records] == [3, 2, 1]
    assert [r.title for r in records if r.id == 1] == ["Story 1 (revised)"]


def test_snapshot_cap_drops_oldest_but_never_shrinks(store):
    snapshot = LocalSnapshot(store, max_records=3)

    async def scenario():
        sizes = [await snapshot.merge([coerce_post(raw_post(i, day=i)) for i in range(1, 5)])]
        sizes.append(await snapshot.merge([coerce_post(raw_post(9, day=9))]))
        snapshot.max_records = 2
        sizes.append(await snapshot.merge([coerce_post(raw_post(2, day=2))]))
        return sizes, await snapshot.records()

    sizes, records = asyncio.run(scenario())

    assert sizes == [3, 3, 3]
    assert [r.id for r in records] == [9, 4, 3]


def test_snapshot_query_filters_and_finds_slug(store):
    snapshot = LocalSnapshot(store)
    posts = [
        raw_post(1, day=1, categories=[5]),
        raw_post(2, day=2, tags=[7], title={"rendered": "The Ghost Ship"}),
        raw_post(3, day=3, categories=[5], tags=[7]),
    ]
    asyncio.run(snapshot.merge([coerce_post(p) for p in posts]))

    assert [r.id for r in asyncio.run(snapshot.query(categories=[5]))] == [3, 1]
    assert [r.id for r in asyncio.run(snapshot.query(tags=[7]))] == [3, 2]
    assert [r.id for r in asyncio.run(snapshot.query(search="ghost"))] == [2]
    assert asyncio.run(snapshot.find_by_slug("story-3")).id == 3
    assert asyncio.run(snapshot.find_by_slug("missing")) is None

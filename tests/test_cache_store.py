"""Tests for the content-addressed store and its eviction policies."""

import os
from concurrent.futures import ThreadPoolExecutor

import pytest

from unilock.cache.digest import canonical_json, compute_digest, is_valid_digest
from unilock.cache.eviction import LRUPolicy, MaxAgePolicy
from unilock.cache.store import FileContentStore, MemoryContentStore
from unilock.errors import ConfigurationError, IntegrityError


class FakeClock:
    """Monotonic clock advancing one second per call."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    """Run each store test against both backends."""
    clock = FakeClock()
    if request.param == "memory":
        return MemoryContentStore(clock=clock)
    return FileContentStore(str(tmp_path / "cache"), clock=clock)


class TestDigest:
    """Tests for digest helpers."""

    def test_compute_digest_format(self):
        digest = compute_digest(b"hello")
        assert digest == "sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        assert is_valid_digest(digest)

    def test_invalid_digests(self):
        assert not is_valid_digest("md5:abc")
        assert not is_valid_digest("sha256:" + "G" * 64)
        assert not is_valid_digest("")

    def test_canonical_json_is_key_order_independent(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})
        assert canonical_json({"a": 1}) == b'{"a":1}'


class TestPutGet:
    """Tests for verified reads and writes."""

    def test_put_then_get(self, store):
        digest = compute_digest(b"payload")
        assert store.put(digest, b"payload") == digest
        assert store.contains(digest)
        assert store.get(digest) == b"payload"

    def test_get_absent(self, store):
        assert store.get(compute_digest(b"never stored")) is None

    def test_put_rejects_mismatched_content(self, store):
        digest = compute_digest(b"expected")
        with pytest.raises(IntegrityError) as exc:
            store.put(digest, b"something else")
        assert exc.value.digest == digest
        assert exc.value.actual == compute_digest(b"something else")
        assert not store.contains(digest)

    def test_put_rejects_malformed_digest(self, store):
        with pytest.raises(IntegrityError):
            store.put("sha256:nothex", b"data")

    def test_put_is_idempotent(self, store):
        digest = store.add(b"same")
        assert store.put(digest, b"same") == digest
        assert len(store.entries()) == 1
        assert store.total_bytes() == 4

    def test_put_repairs_corrupt_entry(self, store):
        digest = store.add(b"original")
        # corrupt the stored copy behind the store's back
        store._write(digest, b"tampered")

        assert store.put(digest, b"original") == digest
        assert store.get(digest) == b"original"
        assert len(store.entries()) == 1

    def test_corrupt_entry_is_discarded_on_read(self, store):
        digest = store.add(b"good bytes")
        store._write(digest, b"bad bytes")

        with pytest.raises(IntegrityError):
            store.get(digest)
        assert not store.contains(digest)

        # a later put succeeds since the corrupt copy is gone
        store.put(digest, b"good bytes")
        assert store.get(digest) == b"good bytes"

    def test_concurrent_puts_of_same_digest(self, store):
        data = b"x" * 4096
        digest = compute_digest(data)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: store.put(digest, data), range(32)))

        assert results == [digest] * 32
        assert store.get(digest) == data
        assert len(store.entries()) == 1

    def test_concurrent_puts_of_different_digests(self, store):
        blobs = [f"blob-{i}".encode() for i in range(20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            digests = list(pool.map(store.add, blobs))
        assert sorted(digests) == sorted(e.digest for e in store.entries())
        for digest, blob in zip(digests, blobs):
            assert store.get(digest) == blob


class TestRefs:
    """Tests for named references."""

    def test_set_and_get_ref(self, store):
        digest = store.add(b"metadata")
        store.set_ref("versions/requests", digest)
        assert store.get_ref("versions/requests") == digest
        assert store.get_ref("versions/missing") is None

    def test_ref_can_be_repointed(self, store):
        first = store.add(b"v1")
        second = store.add(b"v2")
        store.set_ref("versions/a", first)
        store.set_ref("versions/a", second)
        assert store.get_ref("versions/a") == second

    def test_ref_rejects_malformed_digest(self, store):
        with pytest.raises(ConfigurationError):
            store.set_ref("versions/a", "not-a-digest")


class TestEviction:
    """Tests for LRU and max-age eviction with pinning."""

    def _fill(self, store):
        a = store.add(b"a" * 10)
        b = store.add(b"b" * 10)
        c = store.add(b"c" * 10)
        store.get(a)
        return a, b, c

    def test_lru_evicts_least_recently_used(self, store):
        a, b, c = self._fill(store)

        evicted = store.evict(LRUPolicy(max_bytes=20))

        assert evicted == [b]
        assert store.contains(a) and store.contains(c)
        assert store.total_bytes() == 20

    def test_lru_skips_pinned(self, store):
        a, b, c = self._fill(store)

        with store.pin([b]):
            assert b in store.pinned()
            evicted = store.evict(LRUPolicy(max_bytes=20))

        assert evicted == [c]
        assert store.contains(b)
        assert store.pinned() == frozenset()

    def test_lru_under_budget_is_noop(self, store):
        self._fill(store)
        assert store.evict(LRUPolicy(max_bytes=1000)) == []

    def test_everything_pinned_survives_zero_budget(self, store):
        digests = self._fill(store)
        with store.pin(digests):
            assert store.evict(LRUPolicy(max_bytes=0)) == []
        assert len(store.entries()) == 3

    def test_nested_pins(self, store):
        a, _, _ = self._fill(store)
        with store.pin([a]):
            with store.pin([a]):
                pass
            assert a in store.pinned()
        assert a not in store.pinned()

    def test_delete_respects_pins(self, store):
        a, _, _ = self._fill(store)
        with store.pin([a]):
            assert store.delete(a) is False
        assert store.delete(a) is True
        assert store.delete(a) is False

    def test_pin_taken_after_selection_is_honoured(self, store):
        a, b, c = self._fill(store)

        class PinningPolicy(LRUPolicy):
            """Pins the oldest victim after choosing it, like a racing resolution would."""

            def __init__(self):
                super().__init__(max_bytes=0)
                self.pin = None

            def select(self, entries, pinned):
                victims = super().select(entries, pinned)
                self.pin = store.pin(victims[:1])
                self.pin.__enter__()
                return victims

        policy = PinningPolicy()
        evicted = store.evict(policy)
        policy.pin.__exit__(None, None, None)

        assert b not in evicted
        assert store.contains(b)
        assert sorted(evicted) == sorted([a, c])

    def test_write_locks_do_not_grow(self, store):
        stripes = len(store._stripes)
        for i in range(200):
            store.delete(store.add(f"blob-{i}".encode()))
        assert len(store._stripes) == stripes

    def test_max_age(self, store):
        a, b, c = self._fill(store)
        ages = {e.digest: e.last_access for e in store.entries()}

        policy = MaxAgePolicy(max_age_seconds=1.5, now=ages[a])
        evicted = store.evict(policy)

        # a was touched last, c one tick earlier, b two ticks earlier
        assert evicted == [b]

    def test_negative_budget_rejected(self):
        with pytest.raises(ValueError):
            LRUPolicy(max_bytes=-1)


class TestFileLayout:
    """Tests specific to the on-disk store."""

    def test_objects_are_sharded_by_prefix(self, tmp_path):
        store = FileContentStore(str(tmp_path))
        digest = store.add(b"sharded")
        hexpart = digest.split(":", 1)[1]
        assert (tmp_path / "objects" / hexpart[:2] / hexpart[2:]).read_bytes() == b"sharded"

    def test_no_temp_files_left_behind(self, tmp_path):
        store = FileContentStore(str(tmp_path))
        for i in range(5):
            store.add(f"item-{i}".encode())
        store.set_ref("versions/a", store.add(b"meta"))
        assert os.listdir(tmp_path / "tmp") == []

    def test_put_repairs_rotten_object_file(self, tmp_path):
        store = FileContentStore(str(tmp_path))
        digest = store.add(b"hello")
        hexpart = digest.split(":", 1)[1]
        (tmp_path / "objects" / hexpart[:2] / hexpart[2:]).write_bytes(b"rotten")

        assert store.put(digest, b"hello") == digest
        assert (tmp_path / "objects" / hexpart[:2] / hexpart[2:]).read_bytes() == b"hello"
        assert store.get(digest) == b"hello"

    def test_pins_visible_across_instances(self, tmp_path):
        """A pin held through one store protects the entry from another store's eviction."""
        resolving = FileContentStore(str(tmp_path))
        digest = resolving.add(b"in use")
        other = FileContentStore(str(tmp_path))

        with resolving.pin([digest]):
            assert digest in other.pinned()
            assert other.evict(LRUPolicy(max_bytes=0)) == []
            assert other.delete(digest) is False
            assert len(os.listdir(tmp_path / "pins")) == 1

        assert os.listdir(tmp_path / "pins") == []
        assert other.pinned() == frozenset()
        assert other.evict(LRUPolicy(max_bytes=0)) == [digest]
        assert not resolving.contains(digest)

    def test_nested_pins_keep_one_pin_file(self, tmp_path):
        store = FileContentStore(str(tmp_path))
        digest = store.add(b"nested")
        with store.pin([digest]):
            with store.pin([digest]):
                pass
            assert len(os.listdir(tmp_path / "pins")) == 1
        assert os.listdir(tmp_path / "pins") == []

    def test_entries_visible_across_instances(self, tmp_path):
        first = FileContentStore(str(tmp_path))
        digest = first.add(b"shared")
        first.set_ref("versions/shared", digest)

        second = FileContentStore(str(tmp_path))
        assert second.get_ref("versions/shared") == digest
        assert second.get(digest) == b"shared"

    def test_last_access_follows_clock(self, tmp_path):
        clock = FakeClock(start=5000.0)
        store = FileContentStore(str(tmp_path), clock=clock)
        digest = store.add(b"timed")
        (entry,) = store.entries()
        assert entry.digest == digest
        assert entry.last_access == pytest.approx(5001.0)

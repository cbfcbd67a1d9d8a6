"""Unit tests for the tiered cache."""
from unittest.mock import Mock

import pytest
from moto import mock_aws

from processor.errors import StorageUnavailableError
from processor.models import CacheEntry
from storage.cache_table import CacheTable
from storage.kv_store import FileKeyValueStore
from storage.tiered_cache import KV_PREFIX, TieredCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store(tmp_path):
    return FileKeyValueStore(str(tmp_path / 'store.json'))


@pytest.fixture
def cache_table(make_table):
    with mock_aws():
        make_table('test-cache', key='key')
        yield CacheTable('test-cache', region_name='us-east-1')


class TestTieredCache:

    def test_set_then_get(self, kv_store, clock):
        cache = TieredCache(kv_store, default_ttl=60, clock=clock)

        assert cache.set('current', {'temp': 21}) is True
        assert cache.get('current') == {'temp': 21}
        assert kv_store.get(KV_PREFIX + 'current')['expiresAt'] == 1060

    def test_expired_entry_is_absent(self, kv_store, clock):
        cache = TieredCache(kv_store, default_ttl=60, clock=clock)
        cache.set('current', {'temp': 21})

        clock.now = 1061

        assert cache.get('current') is None

    def test_entry_at_expiry_instant_is_still_fresh(self, kv_store, clock):
        cache = TieredCache(kv_store, default_ttl=60, clock=clock)
        cache.set('current', 1)

        clock.now = 1060

        assert cache.get('current') == 1

    def test_kv_hit_is_written_back_to_memory(self, kv_store, clock):
        TieredCache(kv_store, clock=clock).set('2024-03-01', ['a'])
        fresh_process = TieredCache(kv_store, clock=clock)

        assert fresh_process.get('2024-03-01') == ['a']
        assert '2024-03-01' in fresh_process._memory

    def test_expired_kv_entry_is_absent(self, kv_store, clock):
        kv_store.set(KV_PREFIX + 'old', CacheEntry('old', 1, 0, 500).to_dict())

        assert TieredCache(kv_store, clock=clock).get('old') is None

    def test_older_data_does_not_overwrite_fresher_entry(self, kv_store, clock):
        cache = TieredCache(kv_store, clock=clock)
        cache.set('current', 'new', captured_at=990)

        assert cache.set('current', 'stale', captured_at=900) is False
        assert cache.get('current') == 'new'

    def test_newer_data_replaces_entry(self, kv_store, clock):
        cache = TieredCache(kv_store, clock=clock)
        cache.set('current', 'old', captured_at=900)

        assert cache.set('current', 'new', captured_at=990) is True
        assert cache.get('current') == 'new'

    def test_delete(self, kv_store, clock):
        cache = TieredCache(kv_store, clock=clock)
        cache.set('current', 1)

        cache.delete('current')

        assert cache.get('current') is None
        assert kv_store.get(KV_PREFIX + 'current') is None

    def test_purge_expired(self, kv_store, clock):
        cache = TieredCache(kv_store, default_ttl=60, clock=clock)
        cache.set('short', 1, ttl=10)
        cache.set('long', 2, ttl=600)

        clock.now = 1100

        assert cache.purge_expired() == ['short']
        assert kv_store.get(KV_PREFIX + 'short') is None
        assert cache.get('long') == 2

    def test_database_tier_is_read_through(self, kv_store, clock, cache_table):
        TieredCache(kv_store, table=cache_table, clock=clock).set('current', {'a': 1.5})
        kv_store.remove(KV_PREFIX + 'current')
        cache = TieredCache(kv_store, table=cache_table, clock=clock)

        assert cache.get('current') == {'a': 1.5}
        # Written back to the key-value tier
        assert kv_store.get(KV_PREFIX + 'current')['payload'] == {'a': 1.5}

    def test_database_failure_falls_back_to_kv(self, kv_store, clock):
        table = Mock()
        table.put_entry.side_effect = StorageUnavailableError('down')
        table.get_entry.side_effect = StorageUnavailableError('down')
        cache = TieredCache(kv_store, table=table, clock=clock)

        assert cache.set('current', 'value') is True
        cache.clear_memory()

        assert cache.get('current') == 'value'

    def test_kv_failure_keeps_memory_tier(self, clock):
        kv_store = Mock()
        kv_store.get.side_effect = StorageUnavailableError('disk')
        kv_store.set.side_effect = StorageUnavailableError('disk')
        cache = TieredCache(kv_store, clock=clock)

        cache.set('current', 'value')

        assert cache.get('current') == 'value'


class TestCacheTable:

    def test_round_trip(self, cache_table):
        cache_table.put_entry(CacheEntry('k', {'n': [1, 2]}, 10.0, 20.5))

        entry = cache_table.get_entry('k')

        assert entry == CacheEntry('k', {'n': [1, 2]}, 10.0, 20.5)
        assert cache_table.get_entry('missing') is None

    def test_clear(self, cache_table):
        cache_table.put_entry(CacheEntry('a', 1, 1.0, 2.0))
        cache_table.put_entry(CacheEntry('b', 2, 1.0, 2.0))

        assert cache_table.clear() == 2
        assert cache_table.get_entry('a') is None

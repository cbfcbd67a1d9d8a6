"""Unit tests for the key-value file store, obfuscation and the handoff queue."""
from datetime import date

import pytest

from processor.errors import StorageUnavailableError
from processor.models import HandoffRecord
from storage.handoff_queue import QUEUE_KEY, HandoffQueue
from storage.kv_store import FileKeyValueStore
from storage.local_events import LocalEventStore
from storage.obfuscation import deobfuscate, obfuscate


@pytest.fixture
def kv_store(tmp_path):
    return FileKeyValueStore(str(tmp_path / 'store.json'))


class TestObfuscation:

    def test_obfuscated_value_is_reversible(self):
        secret = 'https://calendar.example.com/private/abc.ics'

        hidden = obfuscate(secret)

        assert hidden != secret
        assert 'calendar' not in hidden
        assert deobfuscate(hidden) == secret

    def test_deobfuscate_rejects_garbage(self):
        with pytest.raises(ValueError):
            deobfuscate('%%% not base64 %%%')


class TestFileKeyValueStore:

    def test_missing_file_reads_empty(self, kv_store):
        assert kv_store.get('anything') is None
        assert kv_store.get('anything', 'default') == 'default'
        assert kv_store.keys() == []

    def test_set_get_remove(self, kv_store):
        kv_store.set('a', {'x': 1})
        kv_store.set('b', [1, 2])

        assert kv_store.get('a') == {'x': 1}
        assert kv_store.keys() == ['a', 'b']
        assert kv_store.remove('a') is True
        assert kv_store.remove('a') is False
        assert kv_store.get('a') is None

    def test_values_survive_new_instance(self, tmp_path):
        path = str(tmp_path / 'nested' / 'store.json')
        FileKeyValueStore(path).set('key', 'value')

        assert FileKeyValueStore(path).get('key') == 'value'

    def test_obfuscated_file(self, tmp_path):
        path = tmp_path / 'store.json'
        store = FileKeyValueStore(str(path), obfuscate_file=True)

        store.set('url', 'https://calendar.example.com/private.ics')

        assert 'calendar.example.com' not in path.read_text()
        assert store.get('url') == 'https://calendar.example.com/private.ics'

    def test_secure_values(self, kv_store, tmp_path):
        kv_store.set_secure('token', 'hunter2')

        assert kv_store.get('token') != 'hunter2'
        assert kv_store.get_secure('token') == 'hunter2'
        assert kv_store.get_secure('missing') is None

    def test_corrupt_file_raises_storage_unavailable(self, tmp_path):
        path = tmp_path / 'store.json'
        path.write_text('{not json')

        with pytest.raises(StorageUnavailableError):
            FileKeyValueStore(str(path)).get('key')

    def test_purge_expired(self, kv_store):
        kv_store.set('old', {'value': 1, 'expiresAt': 100})
        kv_store.set('fresh', {'value': 2, 'expiresAt': 300})
        kv_store.set('plain', 'no expiry')

        removed = kv_store.purge_expired(now=200)

        assert removed == 1
        assert kv_store.keys() == ['fresh', 'plain']


class TestHandoffQueue:

    def test_append_and_drain(self, kv_store):
        queue = HandoffQueue(kv_store)
        queue.append(HandoffRecord('cal-1', 'BEGIN:VCALENDAR', '2024-01-01T00:00:00+00:00'))
        queue.append(HandoffRecord('cal-2', '<html></html>', '2024-01-01T00:05:00+00:00'))

        assert len(queue) == 2
        assert kv_store.get(QUEUE_KEY)[0] == {
            'calendarId': 'cal-1',
            'rawPayload': 'BEGIN:VCALENDAR',
            'syncTime': '2024-01-01T00:00:00+00:00',
        }

        drained = queue.drain()

        assert [record.calendar_id for record in drained] == ['cal-1', 'cal-2']
        assert len(queue) == 0
        assert queue.drain() == []

    def test_unreadable_records_are_dropped(self, kv_store):
        kv_store.set(QUEUE_KEY, [{'calendarId': 'only-id'}])

        assert HandoffQueue(kv_store).drain() == []
        assert kv_store.get(QUEUE_KEY) is None

    def test_requeue_goes_ahead_of_new_records(self, kv_store):
        queue = HandoffQueue(kv_store)
        queue.append(HandoffRecord('cal-1', 'old', '2024-01-01T00:00:00+00:00'))
        retained = queue.drain()
        queue.append(HandoffRecord('cal-2', 'new', '2024-01-01T00:05:00+00:00'))

        assert queue.requeue(retained) == 2

        assert [record.raw_payload for record in queue.pending()] == ['old', 'new']


class TestLocalEventStore:

    def test_add_list_remove(self, kv_store):
        store = LocalEventStore(kv_store)

        event = store.add_event('Grandma visit', date(2024, 7, 1), location='Home')

        events = store.list_events()
        assert [e.title for e in events] == ['Grandma visit']
        assert events[0].calendar_id == 'local_calendar'
        assert events[0].event_id == event.event_id
        assert store.remove_event(event.event_id) is True
        assert store.list_events() == []
        assert store.remove_event(event.event_id) is False

    def test_empty_title_is_rejected(self, kv_store):
        with pytest.raises(ValueError):
            LocalEventStore(kv_store).add_event('  ', date(2024, 7, 1))

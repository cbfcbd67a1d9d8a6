"""Unit tests for configuration, logging and the foreground app."""
import json
import logging
import sys
from unittest.mock import MagicMock, Mock, patch

import pytest

from app import CalendarApp, main
from config import LAMBDA_KV_STORE_PATH, AppConfig
from logging_config import JsonFormatter, setup_logging
from processor.models import SyncResult
from sync.scheduler import BackgroundSupport


class TestAppConfig:

    def test_defaults(self):
        config = AppConfig.from_env({})

        assert config.calendars_table == 'family-calendars'
        assert config.cache_table == 'family-calendar-cache'
        assert config.refresh_min_interval_seconds == 300
        assert config.expired_cleanup_interval_seconds == 3600
        assert config.periodic_sync_seconds == 12 * 60 * 60
        assert config.cache_ttl_seconds == 6 * 60 * 60
        assert config.worker_target_arn is None

    def test_from_env(self):
        config = AppConfig.from_env({
            'CALENDARS_TABLE': 'cals',
            'CACHE_TABLE': '',
            'CACHE_TTL_HOURS': '1.5',
            'PERIODIC_SYNC_HOURS': '24',
            'OBFUSCATE_KV_STORE': 'true',
            'WORKER_FUNCTION_NAME': ' worker ',
            'LOG_LEVEL': 'DEBUG',
        })

        assert config.calendars_table == 'cals'
        assert config.cache_table is None
        assert config.cache_ttl_seconds == 5400
        assert config.periodic_sync_seconds == 86400
        assert config.obfuscate_kv_store is True
        assert config.worker_function_name == 'worker'
        assert config.log_level == 'DEBUG'

    def test_lambda_default_store_path_is_writable(self):
        assert AppConfig.from_env({'AWS_LAMBDA_FUNCTION_NAME': 'worker'}).kv_store_path == \
            LAMBDA_KV_STORE_PATH
        assert LAMBDA_KV_STORE_PATH.startswith('/tmp/')

    def test_store_path_override_wins_on_lambda(self):
        config = AppConfig.from_env({
            'AWS_LAMBDA_FUNCTION_NAME': 'worker',
            'KV_STORE_PATH': '/mnt/shared/store.json',
        })

        assert config.kv_store_path == '/mnt/shared/store.json'


class TestLogging:

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord('sync', logging.INFO, __file__, 1, 'Synced %s', ('a',), None)
        record.calendar_id = 'ical_family'

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Synced a'
        assert data['level'] == 'INFO'
        assert data['logger'] == 'sync'
        assert data['calendar_id'] == 'ical_family'
        assert 'args' not in data

    def test_json_formatter_includes_exception(self):
        try:
            raise ValueError('bad')
        except ValueError:
            record = logging.LogRecord('sync', logging.ERROR, __file__, 1, 'failed', (), None)
            record.exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(record))

        assert 'ValueError: bad' in data['exception']

    @pytest.mark.parametrize('level,expected', [
        ('DEBUG', logging.DEBUG),
        ('warning', logging.WARNING),
        ('nonsense', logging.INFO),
    ])
    def test_setup_logging_levels(self, level, expected):
        setup_logging(level)

        root = logging.getLogger()
        assert root.level == expected
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)


@pytest.fixture
def services():
    services = MagicMock()
    services.kv_store = Mock()
    services.kv_store.get.return_value = None
    return services


class TestCalendarApp:

    def test_activate_merges_handoff_and_reads_background_result(self, services):
        result = SyncResult('2024-01-01T00:00:00+00:00', 2, 0, 2)
        services.orchestrator.drain_handoff.return_value = 3
        services.orchestrator.last_background_result.return_value = result
        app = CalendarApp(services)

        assert app.activate() == 3
        assert app.last_result == result

    def test_start_registers_background_sync(self, services):
        channel = Mock()
        support = BackgroundSupport(background_sync=True, periodic_sync=False)
        services.orchestrator.last_background_result.return_value = None
        services.orchestrator.register_background_sync.return_value = support
        app = CalendarApp(services, channel=channel)

        assert app.start() == support
        services.orchestrator.register_background_sync.assert_called_once_with(channel)

    def test_suppressed_refresh_keeps_last_result(self, services):
        previous = SyncResult('t', 1, 0, 1)
        services.orchestrator.refresh.return_value = None
        app = CalendarApp(services)
        app.last_result = previous

        assert app.refresh() is None
        assert app.last_result == previous

    def test_run_timer(self, services):
        services.orchestrator.refresh.return_value = None
        sleep = Mock()
        app = CalendarApp(services)

        app.run_timer(60, iterations=3, sleep=sleep)

        assert services.orchestrator.refresh.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(60)

    def test_remove_calendar_clears_selection_and_sync_state(self, services):
        services.repository.remove_calendar.return_value = True
        app = CalendarApp(services)
        app.selection = Mock()

        assert app.remove_calendar('ical_family') is True

        app.selection.cleanup.assert_called_once_with('ical_family')
        services.orchestrator.forget_calendar.assert_called_once_with('ical_family')

    def test_remove_unknown_calendar(self, services):
        services.repository.remove_calendar.return_value = False
        app = CalendarApp(services)
        app.selection = Mock()

        assert app.remove_calendar('missing') is False

        app.selection.cleanup.assert_not_called()
        services.orchestrator.forget_calendar.assert_not_called()


class TestMain:

    @pytest.fixture
    def built(self, services):
        services.orchestrator.drain_handoff.return_value = 0
        services.orchestrator.last_background_result.return_value = None
        with patch('app.build_services', return_value=services), patch('app.setup_logging'):
            yield services

    def test_refresh_prints_result(self, built, capsys):
        built.orchestrator.refresh.return_value = SyncResult('t', 2, 0, 2)

        assert main(['refresh', '--force']) == 0

        built.orchestrator.refresh.assert_called_once_with(force=True)
        assert json.loads(capsys.readouterr().out)['syncedCount'] == 2

    def test_refresh_with_errors_exits_nonzero(self, built):
        built.orchestrator.refresh.return_value = SyncResult('t', 1, 1, 2)

        assert main(['refresh']) == 1

    def test_skipped_refresh(self, built, capsys):
        built.orchestrator.refresh.return_value = None

        assert main(['refresh']) == 0
        assert 'skipped' in capsys.readouterr().out

    def test_missing_command(self, built):
        with pytest.raises(SystemExit):
            main([])

    def test_remove(self, built, capsys):
        built.repository.remove_calendar.return_value = True

        assert main(['remove', 'ical_family']) == 0

        built.repository.remove_calendar.assert_called_once_with('ical_family')
        assert 'Removed ical_family' in capsys.readouterr().out

    def test_remove_unknown(self, built):
        built.repository.remove_calendar.return_value = False

        assert main(['remove', 'missing']) == 1

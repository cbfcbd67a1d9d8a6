"""Unit tests for the scheduler, message channels and background worker."""
import io
import json
from unittest.mock import Mock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from processor.models import SyncResult
from sync.background import BackgroundSyncWorker
from sync.channels import LambdaChannel, LocalChannel
from sync.messages import (
    Ack, MessageType, RegisterBackgroundSync, RegisterPeriodicSync, SkipWaiting,
)
from sync.scheduler import SYNC_EVENT_SOURCE, EventBridgeScheduler, rate_expression

WORKER_ARN = 'arn:aws:lambda:us-east-1:123456789012:function:calendar-sync-worker'


def _client_error(operation):
    return ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, operation)


@pytest.mark.parametrize('seconds,expected', [
    (30, 'rate(1 minute)'),
    (300, 'rate(5 minutes)'),
    (3600, 'rate(1 hour)'),
    (12 * 60 * 60, 'rate(12 hours)'),
    (24 * 60 * 60, 'rate(1 day)'),
    (61, 'rate(2 minutes)'),
])
def test_rate_expression(seconds, expected):
    assert rate_expression(seconds) == expected


class TestEventBridgeScheduler:

    def test_unavailable_without_target(self):
        scheduler = EventBridgeScheduler(None)

        assert scheduler.available is False
        assert scheduler.register_background_sync('calendar-sync') is False
        assert scheduler.register_periodic_sync('calendar-sync') is False

    def test_register_background_sync(self):
        client = Mock()
        client.put_events.return_value = {'FailedEntryCount': 0, 'Entries': [{'EventId': '1'}]}
        scheduler = EventBridgeScheduler(WORKER_ARN, client=client)

        assert scheduler.register_background_sync('calendar-sync') is True

        rule = client.put_rule.call_args.kwargs
        assert rule['Name'] == 'calendar-sync-trigger'
        assert json.loads(rule['EventPattern']) == {
            'source': [SYNC_EVENT_SOURCE], 'detail-type': ['calendar-sync']
        }
        assert client.put_targets.call_args.kwargs['Targets'][0]['Arn'] == WORKER_ARN
        entry = client.put_events.call_args.kwargs['Entries'][0]
        assert entry['DetailType'] == 'calendar-sync'

    def test_rejected_trigger_reports_failure(self):
        client = Mock()
        client.put_events.return_value = {'FailedEntryCount': 1, 'Entries': [{}]}

        assert EventBridgeScheduler(WORKER_ARN, client=client) \
            .register_background_sync('calendar-sync') is False

    def test_client_error_reports_failure(self):
        client = Mock()
        client.put_rule.side_effect = _client_error('PutRule')
        scheduler = EventBridgeScheduler(WORKER_ARN, client=client)

        assert scheduler.register_background_sync('calendar-sync') is False
        assert scheduler.register_periodic_sync('calendar-sync') is False
        client.put_targets.assert_not_called()

    def test_register_periodic_sync_creates_scheduled_rule(self):
        with mock_aws():
            scheduler = EventBridgeScheduler(WORKER_ARN, region_name='us-east-1')

            assert scheduler.register_periodic_sync('calendar-sync', 12 * 60 * 60) is True

            events = boto3.client('events', region_name='us-east-1')
            rule = events.describe_rule(Name='calendar-sync-periodic')
            assert rule['ScheduleExpression'] == 'rate(12 hours)'
            targets = events.list_targets_by_rule(Rule='calendar-sync-periodic')['Targets']
            assert [t['Arn'] for t in targets] == [WORKER_ARN]


class TestBackgroundSyncWorker:

    def setup_method(self):
        self.orchestrator = Mock()
        self.scheduler = Mock()
        self.worker = BackgroundSyncWorker(self.orchestrator, self.scheduler)

    def test_skip_waiting(self):
        assert self.worker.handle_message({'type': 'SKIP_WAITING'}) == Ack(success=True)

    def test_register_background_sync(self):
        self.scheduler.register_background_sync.return_value = True

        ack = self.worker.handle_message(
            {'type': 'REGISTER_BACKGROUND_SYNC', 'payload': {'tag': 'nightly'}}
        )

        assert ack.success is True
        self.scheduler.register_background_sync.assert_called_once_with('nightly')

    def test_unsupported_periodic_sync(self):
        self.scheduler.register_periodic_sync.return_value = False

        ack = self.worker.handle_message({
            'type': 'REGISTER_PERIODIC_SYNC',
            'payload': {'tag': 'calendar-sync', 'minInterval': 3600},
        })

        assert ack.success is False
        assert 'not supported' in ack.error
        self.scheduler.register_periodic_sync.assert_called_once_with('calendar-sync', 3600)

    def test_unknown_message(self):
        ack = self.worker.handle_message({'type': 'NOPE'})

        assert ack.success is False
        assert 'NOPE' in ack.error

    def test_run_sync_publishes_result(self):
        result = SyncResult('2024-01-01T00:00:00+00:00', 2, 0, 2)
        self.orchestrator.sync_all.return_value = result

        assert self.worker.run_sync() == result
        self.orchestrator.publish_result.assert_called_once_with(result)

    def test_run_sync_merges_leftover_payloads_first(self):
        self.orchestrator.sync_all.return_value = SyncResult('t', 0, 0, 0)

        self.worker.run_sync()

        assert [call[0] for call in self.orchestrator.mock_calls] == \
            ['drain_handoff', 'sync_all', 'publish_result']


class TestChannels:

    def test_local_channel_sends_serialized_copy(self):
        worker = Mock()
        worker.handle_message.return_value = Ack(success=True)

        ack = LocalChannel(worker).send(RegisterPeriodicSync(tag='t', min_interval_seconds=60))

        assert ack.success is True
        worker.handle_message.assert_called_once_with({
            'type': MessageType.REGISTER_PERIODIC_SYNC.value,
            'payload': {'tag': 't', 'minInterval': 60},
        })

    def test_lambda_channel_parses_handler_response(self):
        client = Mock()
        client.invoke.return_value = {
            'StatusCode': 200,
            'Payload': io.BytesIO(json.dumps({
                'statusCode': 400,
                'body': json.dumps({'success': False, 'error': 'Background sync not supported'}),
            }).encode('utf-8')),
        }
        channel = LambdaChannel('calendar-sync-worker', client=client)

        ack = channel.send(RegisterBackgroundSync())

        assert ack == Ack(success=False, error='Background sync not supported')
        payload = json.loads(client.invoke.call_args.kwargs['Payload'])
        assert payload == {'type': 'REGISTER_BACKGROUND_SYNC', 'payload': {'tag': 'calendar-sync'}}

    def test_lambda_channel_function_error(self):
        client = Mock()
        client.invoke.return_value = {
            'StatusCode': 200,
            'FunctionError': 'Unhandled',
            'Payload': io.BytesIO(b'{"errorMessage": "boom"}'),
        }

        ack = LambdaChannel('worker', client=client).send(SkipWaiting())

        assert ack == Ack(success=False, error='boom')

    def test_lambda_channel_unreachable(self):
        client = Mock()
        client.invoke.side_effect = _client_error('Invoke')

        ack = LambdaChannel('worker', client=client).send(SkipWaiting())

        assert ack.success is False
        assert 'denied' in ack.error

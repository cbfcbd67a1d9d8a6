"""Unit tests for DynamoDB manager."""
from decimal import Decimal
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from processor.errors import StorageUnavailableError
from storage.dynamodb_manager import (
    DynamoDBManager, attribute_equals, from_dynamodb, to_dynamodb,
)


@pytest.fixture
def manager(make_table):
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        make_table('test-items')
        yield DynamoDBManager('test-items', region_name='us-east-1')


class TestConversion:

    def test_to_dynamodb_converts_nested_floats(self):
        assert to_dynamodb({'a': 1.5, 'b': [2.25, 'x'], 'c': 3}) == \
            {'a': Decimal('1.5'), 'b': [Decimal('2.25'), 'x'], 'c': 3}

    def test_from_dynamodb_restores_ints_and_floats(self):
        value = from_dynamodb({'a': Decimal('1.5'), 'b': [Decimal('2')], 'c': 'x'})

        assert value == {'a': 1.5, 'b': [2], 'c': 'x'}
        assert isinstance(value['b'][0], int)


class TestDynamoDBManager:
    """Test cases for DynamoDBManager."""

    def test_batch_write_and_scan(self, manager):
        items = [{'id': f"item-{i}", 'kind': 'even' if i % 2 == 0 else 'odd'} for i in range(30)]

        assert manager.batch_write(items) == 30

        assert len(manager._scan()) == 30
        assert len(manager._scan(attribute_equals('kind', 'even'))) == 15

    def test_get_put_delete(self, manager):
        manager._put_item({'id': 'a', 'score': 0.5})

        assert manager._get_item('a') == {'id': 'a', 'score': 0.5}

        manager._delete_item('a')
        assert manager._get_item('a') is None

    def test_conditional_put_failure_is_reraised(self, manager):
        manager._put_item({'id': 'a'})

        with pytest.raises(ClientError):
            manager._put_item({'id': 'a'}, condition=attribute_equals('id', 'missing'))

    def test_batch_delete_and_clear(self, manager):
        manager.batch_write([{'id': str(i)} for i in range(5)])

        assert manager.batch_delete(['0', '1']) == 2
        assert manager._clear() == 3
        assert manager._scan() == []

    def test_failed_batch_is_skipped(self, manager):
        manager.table = Mock()
        manager.table.batch_writer.side_effect = ClientError(
            {'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'slow'}},
            'BatchWriteItem',
        )

        assert manager.batch_write([{'id': 'a'}]) == 0

    def test_scan_error_raises_storage_unavailable(self, manager):
        manager.table = Mock()
        manager.table.scan.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'missing'}}, 'Scan'
        )

        with pytest.raises(StorageUnavailableError):
            manager._scan()

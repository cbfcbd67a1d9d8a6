"""Shared fixtures."""
import boto3
import pytest

from processor.models import Calendar, SourceKind


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_REGION', raising=False)
    monkeypatch.delenv('DYNAMODB_ENDPOINT_URL', raising=False)


@pytest.fixture
def make_table():
    """Create a mock DynamoDB table; call inside mock_aws()."""
    def _create(name: str, key: str = 'id'):
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
        return dynamodb.create_table(
            TableName=name,
            KeySchema=[{'AttributeName': key, 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': key, 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST',
        )
    return _create


@pytest.fixture
def feed_calendar():
    return Calendar(
        id='ical_family',
        name='Family',
        url='https://calendar.example.com/family.ics',
        color='#ff0000',
        source_kind=SourceKind.FEED,
    )


@pytest.fixture
def page_calendar():
    return Calendar(
        id='notion_scraped_team',
        name='Team',
        url='https://www.notion.so/team/0123456789abcdef0123456789abcdef?v=abc',
        color='#00ff00',
        source_kind=SourceKind.SCRAPED,
    )

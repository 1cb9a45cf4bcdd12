"""
Pytest configuration: DynamoDB is emulated in-process with moto.
"""

from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from dynamo_quotes import QuoteRepository, build_quote
from dynamo_quotes.quotes import format_timestamp

QUOTES_TABLE = 'test_quotes_v0'
TOPIC_QUOTES_TABLE = 'test_topic_quotes_v0'

FILAT = {'id': 'qtopic1', 'name': 'Vlad Filat', 'slug': 'vlad-filat', 'type': 'PERSON'}
MOLDOVA = {'id': 'qtopic2', 'name': 'Republica Moldova', 'abbr': 'RM', 'type': 'PLACE', 'slug': 'moldova'}
ROMANIA = {'id': 'qtopic3', 'name': 'Romania', 'slug': 'romania'}


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account"""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb(aws_credentials):
    with mock_aws():
        yield boto3.resource('dynamodb', region_name='us-east-1')


@pytest.fixture
def repository(dynamodb):
    repository = QuoteRepository(dynamodb, QUOTES_TABLE, TOPIC_QUOTES_TABLE)
    repository.create_storage()
    yield repository
    repository.delete_storage()


def found_at(seconds_ago=0):
    return format_timestamp(datetime.now(timezone.utc) - timedelta(seconds=seconds_ago))


def make_quote(**overrides):
    """A quote like the ones found in Moldovan news, overridable per test"""
    params = {
        'author': {'id': 'qtopic1', 'name': 'Vlad Filat'},
        'country': 'md',
        'lang': 'ro',
        'source': {
            'host': 'protv.md',
            'path': '/',
            'id': 'mdro3523523525f45yf34f5fy435fu',
            'title': 'Titlu stire',
        },
        'text': 'Stire importanta despre Romania, RM si Vlad Filat',
        'topics': [FILAT, MOLDOVA, ROMANIA],
    }
    params.update(overrides)
    return build_quote(params)

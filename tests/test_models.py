"""
DynamoModel tests: the storage operations the repository is built on and
the translation of botocore failures.
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from dynamo_quotes.errors import (
    ConflictError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
    from_boto_error,
)
from dynamo_quotes.quote_model import QuoteModel
from dynamo_quotes.topic_quote_model import TopicQuoteModel


def client_error(code, message='boom', operation='PutItem'):
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


@pytest.fixture
def quote_model(dynamodb):
    model = QuoteModel(dynamodb, 'model_quotes')
    model.create_table()
    return model


@pytest.fixture
def topic_quote_model(dynamodb):
    model = TopicQuoteModel(dynamodb, 'model_topic_quotes')
    model.create_table()
    return model


def quote_item(quote_id, last_found_at, locale='md_ro', author_id='a1'):
    return {
        'id': quote_id,
        'locale': locale,
        'authorId': author_id,
        'text': f'text {quote_id}',
        'lastFoundAt': last_found_at,
        'expiresAt': 1900000000,
    }


class TestQuoteModel:

    def test_create_and_get(self, quote_model):
        item = quote_item('q1', '2024-05-01T10:00:00.000Z')

        assert quote_model.create(item) == item
        assert quote_model.get({'id': 'q1'}) == item
        assert quote_model.get({'id': 'q2'}) is None

    def test_create_existing_raises_conflict(self, quote_model):
        quote_model.create(quote_item('q1', '2024-05-01T10:00:00.000Z'))

        with pytest.raises(ConflictError):
            quote_model.create(quote_item('q1', '2024-05-02T10:00:00.000Z'))

        assert quote_model.get({'id': 'q1'})['lastFoundAt'] == '2024-05-01T10:00:00.000Z'

    def test_update_sets_and_removes(self, quote_model):
        quote_model.create(dict(quote_item('q1', '2024-05-01T10:00:00.000Z'), countViews=4))

        updated = quote_model.update({'id': 'q1'}, set_values={'lastFoundAt': '2024-06-01T00:00:00.000Z'},
                                     remove_fields=['countViews'])

        assert updated['lastFoundAt'] == '2024-06-01T00:00:00.000Z'
        assert 'countViews' not in updated
        assert updated['text'] == 'text q1'

    def test_update_missing_raises_not_found(self, quote_model):
        with pytest.raises(NotFoundError):
            quote_model.update({'id': 'q1'}, set_values={'countViews': 1})
        with pytest.raises(NotFoundError):
            quote_model.update({'id': 'q1'})

        assert quote_model.get({'id': 'q1'}) is None

    def test_delete_returns_old_item(self, quote_model):
        item = quote_model.create(quote_item('q1', '2024-05-01T10:00:00.000Z'))

        assert quote_model.delete({'id': 'q1'}) == item
        assert quote_model.delete({'id': 'q1'}) is None

    def test_get_items_in_batches(self, quote_model):
        for i in range(130):
            quote_model.put(quote_item(f'q{i}', f'2024-05-01T10:00:{i % 60:02d}.000Z'))

        keys = [{'id': f'q{i}'} for i in range(130)] + [{'id': 'q0'}, {'id': 'missing'}]
        items = quote_model.get_items(keys, fields=['text'])

        assert len(items) == 130
        assert all(set(item) == {'id', 'text'} for item in items)

    def test_query_orders_and_filters(self, quote_model):
        quote_model.put(quote_item('q1', '2024-05-01T10:00:00.000Z'))
        quote_model.put(quote_item('q2', '2024-05-02T10:00:00.000Z', author_id='a2'))
        quote_model.put(quote_item('q3', '2024-05-03T10:00:00.000Z'))
        quote_model.put(quote_item('q4', '2024-05-04T10:00:00.000Z', locale='ro_ro'))

        index = quote_model.locale_index_name()

        desc = quote_model.query(index, 'md_ro', limit=10)
        assert [item['id'] for item in desc['items']] == ['q3', 'q2', 'q1']

        asc = quote_model.query(index, 'md_ro', limit=10, order='ASC')
        assert [item['id'] for item in asc['items']] == ['q1', 'q2', 'q3']

        older = quote_model.query(index, 'md_ro', last_found_at='2024-05-03T10:00:00.000Z', limit=10)
        assert [item['id'] for item in older['items']] == ['q2', 'q1']

        filtered = quote_model.query(index, 'md_ro', limit=2, filters={'authorId': 'a1'})
        assert [item['id'] for item in filtered['items']] == ['q3', 'q1']

    def test_count(self, quote_model):
        for i in range(3):
            quote_model.put(quote_item(f'q{i}', f'2024-05-0{i + 1}T10:00:00.000Z'))

        assert quote_model.count(quote_model.locale_index_name(), 'md_ro') == 3
        assert quote_model.count(quote_model.author_index_name(), 'a1', filters={'locale': 'ro_ro'}) == 0

    def test_missing_table_is_storage_unavailable(self, dynamodb):
        model = QuoteModel(dynamodb, 'no_such_table')

        with pytest.raises(StorageUnavailableError, match='ResourceNotFoundException'):
            model.get({'id': 'q1'})


class TestTopicQuoteModel:

    def test_put_replaces_on_same_key(self, topic_quote_model):
        key = {'topicId': 't1', 'quoteId': 'q1'}
        topic_quote_model.put(dict(key, lastFoundAt='2024-05-01T10:00:00.000Z', expiresAt=1900000000))
        topic_quote_model.put(dict(key, lastFoundAt='2024-05-02T10:00:00.000Z', expiresAt=1900000000))

        index = topic_quote_model.topic_last_quotes_index_name()
        assert topic_quote_model.count(index, 't1') == 1
        assert topic_quote_model.get(key)['lastFoundAt'] == '2024-05-02T10:00:00.000Z'

    def test_query_by_topic(self, topic_quote_model):
        topic_quote_model.put({'topicId': 't1', 'quoteId': 'q1', 'lastFoundAt': '2024-05-01T10:00:00.000Z'})
        topic_quote_model.put({'topicId': 't1', 'quoteId': 'q2', 'lastFoundAt': '2024-05-02T10:00:00.000Z',
                               'relation': 'MENTION'})
        topic_quote_model.put({'topicId': 't2', 'quoteId': 'q3', 'lastFoundAt': '2024-05-03T10:00:00.000Z'})

        index = topic_quote_model.topic_last_quotes_index_name()
        result = topic_quote_model.query(index, 't1', limit=10)
        assert [item['quoteId'] for item in result['items']] == ['q2', 'q1']

        mentions = topic_quote_model.query(index, 't1', limit=10, filters={'relation': 'MENTION'})
        assert [item['quoteId'] for item in mentions['items']] == ['q2']


class TestErrorTranslation:

    def test_conditional_check_failed(self):
        error = client_error('ConditionalCheckFailedException', 'The conditional request failed')

        assert isinstance(from_boto_error(error, ConflictError), ConflictError)
        assert isinstance(from_boto_error(error, NotFoundError), NotFoundError)
        assert isinstance(from_boto_error(error), StorageUnavailableError)

    def test_validation_exception(self):
        error = from_boto_error(client_error('ValidationException', 'One or more parameter values were invalid'))

        assert isinstance(error, ValidationError)
        assert 'parameter values were invalid' in str(error)

    @pytest.mark.parametrize('code', [
        'ProvisionedThroughputExceededException',
        'ResourceNotFoundException',
        'InternalServerError',
    ])
    def test_infrastructure_errors(self, code):
        error = from_boto_error(client_error(code))

        assert isinstance(error, StorageUnavailableError)
        assert code in str(error)

    def test_connection_errors(self):
        error = from_boto_error(EndpointConnectionError(endpoint_url='http://localhost:8000'))

        assert isinstance(error, StorageUnavailableError)

    def test_model_raises_translated_error(self, quote_model, monkeypatch):
        def throttled(**kwargs):
            raise client_error('ProvisionedThroughputExceededException', 'slow down', 'Query')

        monkeypatch.setattr(quote_model.table, 'query', throttled)

        with pytest.raises(StorageUnavailableError) as excinfo:
            quote_model.query(quote_model.locale_index_name(), 'md_ro')

        assert isinstance(excinfo.value.__cause__, ClientError)


class TestUnprocessedKeys:

    @pytest.fixture
    def sleeps(self, monkeypatch):
        calls = []
        monkeypatch.setattr('dynamo_quotes.model.time.sleep', calls.append)
        return calls

    def test_retries_unprocessed_keys_with_backoff(self, quote_model, monkeypatch, sleeps):
        responses = [
            {
                'Responses': {'model_quotes': [quote_item('q1', '2024-05-01T10:00:00.000Z')]},
                'UnprocessedKeys': {'model_quotes': {'Keys': [{'id': 'q2'}]}},
            },
            {
                'Responses': {'model_quotes': [quote_item('q2', '2024-05-02T10:00:00.000Z')]},
                'UnprocessedKeys': {},
            },
        ]
        requests = []

        def batch_get_item(RequestItems):
            requests.append(RequestItems)
            return responses.pop(0)

        monkeypatch.setattr(quote_model.dynamodb, 'batch_get_item', batch_get_item)

        items = quote_model.get_items([{'id': 'q1'}, {'id': 'q2'}])

        assert [item['id'] for item in items] == ['q1', 'q2']
        assert requests[1] == {'model_quotes': {'Keys': [{'id': 'q2'}]}}
        assert sleeps == [0.05]

    def test_gives_up_when_keys_stay_unprocessed(self, quote_model, monkeypatch, sleeps):
        def batch_get_item(RequestItems):
            return {'Responses': {}, 'UnprocessedKeys': RequestItems}

        monkeypatch.setattr(quote_model.dynamodb, 'batch_get_item', batch_get_item)

        with pytest.raises(StorageUnavailableError, match='unprocessed keys after 5 attempts'):
            quote_model.get_items([{'id': 'q1'}])

        assert sleeps == [0.05, 0.1, 0.2, 0.4]

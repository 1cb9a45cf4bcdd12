import json
import logging
from decimal import Decimal

from . import config
from .errors import ConflictError, NotFoundError, QuoteStoreError, StorageUnavailableError, ValidationError
from .quotes import build_quote
from .repository import QuoteRepository

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# CORS headers
CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, PATCH, DELETE, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token'
}

DEFAULT_LIMIT = 10
MAX_LIMIT = 100

ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StorageUnavailableError, 503),
)

_repository = None


class DecimalEncoder(json.JSONEncoder):
    """Helper class to convert DynamoDB Decimal types to int/float"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return int(obj) if obj % 1 == 0 else float(obj)
        return super(DecimalEncoder, self).default(obj)


def get_repository():
    """Repository shared by invocations of the same container"""
    global _repository
    if _repository is None:
        _repository = QuoteRepository(config.get_dynamodb_resource())
    return _repository


def set_repository(repository):
    global _repository
    _repository = repository


def response(status_code, body):
    return {
        'statusCode': status_code,
        'headers': CORS_HEADERS,
        'body': json.dumps(body, cls=DecimalEncoder)
    }


def lambda_handler(event, context):
    """Route API Gateway events to the quote repository"""
    http_method = event.get('httpMethod')
    path = event.get('resource')
    path_parameters = event.get('pathParameters') or {}
    query_parameters = event.get('queryStringParameters') or {}

    logger.info(f"{http_method} {path}")

    try:
        repository = get_repository()

        if path == '/quotes' and http_method == 'POST':
            return create_quote(repository, parse_body(event))
        elif path == '/quotes/latest' and http_method == 'GET':
            return get_latest_quotes(repository, query_parameters)
        elif path == '/quotes/count' and http_method == 'GET':
            return count_quotes(repository, query_parameters)
        elif path == '/quotes/{id}' and http_method == 'GET':
            return get_quote_by_id(repository, path_parameters.get('id'), query_parameters)
        elif path == '/quotes/{id}' and http_method == 'PATCH':
            return update_quote(repository, path_parameters.get('id'), parse_body(event))
        elif path == '/quotes/{id}' and http_method == 'DELETE':
            return delete_quote(repository, path_parameters.get('id'))
        elif path == '/quotes/author/{authorId}' and http_method == 'GET':
            return get_quotes_by_author(repository, path_parameters.get('authorId'), query_parameters)
        elif path == '/quotes/author/{authorId}/count' and http_method == 'GET':
            return count_quotes_by_author(repository, path_parameters.get('authorId'), query_parameters)
        elif path == '/quotes/topic/{topicId}' and http_method == 'GET':
            return get_quotes_by_topic(repository, path_parameters.get('topicId'), query_parameters)
        elif path == '/quotes/topic/{topicId}/count' and http_method == 'GET':
            return count_quotes_by_topic(repository, path_parameters.get('topicId'), query_parameters)
        else:
            return response(404, {'error': 'Not found'})

    except QuoteStoreError as e:
        status_code = next(
            (code for error_class, code in ERROR_STATUS_CODES if isinstance(e, error_class)), 500
        )
        logger.warning(f"{http_method} {path} failed with {status_code}: {str(e)}")
        return response(status_code, {'error': str(e)})
    except Exception as e:
        logger.exception(f"Error in lambda_handler: {str(e)}")
        return response(500, {'error': 'Internal server error'})


def parse_body(event):
    try:
        body = json.loads(event.get('body') or '{}')
    except json.JSONDecodeError:
        raise ValidationError('Request body must be valid JSON')
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body


def parse_limit(query_params):
    try:
        limit = int(query_params.get('limit', DEFAULT_LIMIT))
    except (TypeError, ValueError):
        raise ValidationError('"limit" must be a number')
    if limit < 1:
        raise ValidationError('"limit" must be greater than 0')
    return min(limit, MAX_LIMIT)


def parse_fields(query_params):
    fields = query_params.get('fields')
    if not fields:
        return None
    return [field.strip() for field in fields.split(',') if field.strip()]


def require(value, name):
    if not value:
        raise ValidationError(f'"{name}" is required')
    return value


def list_response(quotes, limit, **extra):
    result = {'quotes': quotes, 'count': len(quotes)}
    result.update(extra)

    # A full page may have more results after it
    if quotes and len(quotes) == limit and quotes[-1].get('lastFoundAt'):
        result['last_found_at'] = quotes[-1]['lastFoundAt']

    return response(200, result)


def create_quote(repository, body):
    quote = repository.create(build_quote(body))
    logger.info(f"Created quote {quote['id']}")
    return response(201, quote)


def get_quote_by_id(repository, quote_id, query_params):
    quote = repository.get_by_id(require(quote_id, 'id'), fields=parse_fields(query_params))

    if quote is None:
        return response(404, {'error': 'Requested quote was not found.'})

    return response(200, quote)


def update_quote(repository, quote_id, body):
    quote = repository.update(require(quote_id, 'id'), body)
    return response(200, quote)


def delete_quote(repository, quote_id):
    if not repository.delete(require(quote_id, 'id')):
        return response(404, {'error': 'Requested quote was not found.'})

    return response(200, {'id': quote_id, 'deleted': True})


def get_latest_quotes(repository, query_params):
    country = require(query_params.get('country'), 'country')
    lang = require(query_params.get('lang'), 'lang')
    limit = parse_limit(query_params)

    quotes = repository.latest(
        country,
        lang,
        limit=limit,
        last_found_at=query_params.get('lastFoundAt'),
        fields=parse_fields(query_params),
    )

    return list_response(quotes, limit, country=country, lang=lang)


def count_quotes(repository, query_params):
    country = require(query_params.get('country'), 'country')
    lang = require(query_params.get('lang'), 'lang')

    return response(200, {'count': repository.count(country, lang), 'country': country, 'lang': lang})


def get_quotes_by_author(repository, author_id, query_params):
    author_id = require(author_id, 'authorId')
    limit = parse_limit(query_params)

    quotes = repository.latest_by_author(
        author_id,
        country=query_params.get('country'),
        lang=query_params.get('lang'),
        limit=limit,
        last_found_at=query_params.get('lastFoundAt'),
        fields=parse_fields(query_params),
    )

    return list_response(quotes, limit, authorId=author_id)


def count_quotes_by_author(repository, author_id, query_params):
    author_id = require(author_id, 'authorId')
    count = repository.count_by_author(
        author_id,
        country=query_params.get('country'),
        lang=query_params.get('lang'),
    )

    return response(200, {'count': count, 'authorId': author_id})


def get_quotes_by_topic(repository, topic_id, query_params):
    topic_id = require(topic_id, 'topicId')
    limit = parse_limit(query_params)

    page = repository.latest_by_topic_page(
        topic_id,
        limit=limit,
        last_found_at=query_params.get('lastFoundAt'),
        relation=query_params.get('relation'),
        fields=parse_fields(query_params),
    )

    result = {'quotes': page['quotes'], 'count': len(page['quotes']), 'topicId': topic_id}
    if page['last_found_at']:
        result['last_found_at'] = page['last_found_at']

    return response(200, result)


def count_quotes_by_topic(repository, topic_id, query_params):
    topic_id = require(topic_id, 'topicId')
    count = repository.count_by_topic(topic_id, relation=query_params.get('relation'))

    return response(200, {'count': count, 'topicId': topic_id})

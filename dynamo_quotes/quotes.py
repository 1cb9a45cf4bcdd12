"""
Quote helpers: building new quotes, validating payloads and mapping quotes
to and from DynamoDB items.

A quote looks like:

    {
        'id': 'mdro3f2a...',
        'author': {'id': 'qtopic1', 'name': 'Vlad Filat'},
        'country': 'md',
        'lang': 'ro',
        'source': {'host': 'protv.md', 'path': '/', 'id': '...', 'title': '...'},
        'text': '...',
        'topics': [{'id': 'qtopic1', 'name': 'Vlad Filat', 'type': 'PERSON', 'rel': 'MENTION'}],
        'countViews': 0,
        'createdAt': '2024-05-01T10:00:00.000Z',
        'lastFoundAt': '2024-05-01T10:00:00.000Z',
        'expiresAt': 1746093600,
    }
"""

import hashlib
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from . import config
from .errors import ValidationError

# Fields an update may set
MUTABLE_FIELDS = ('countViews', 'lastFoundAt', 'expiresAt')
# Fields an update may remove
REMOVABLE_FIELDS = ('countViews',)
# Fields fixed at creation
IMMUTABLE_FIELDS = ('id', 'author', 'country', 'lang', 'source', 'text', 'topics', 'createdAt')

# Attributes that only exist on the stored item
STORAGE_FIELDS = ('locale', 'authorId')

TOPIC_FIELDS = ('id', 'name', 'slug', 'abbr', 'type', 'rel')

CODE_PATTERN = re.compile(r'^[a-z]{2}$')


def normalize_text(text):
    """Normalizes text so cosmetic variants of a quote share an id"""
    if not text:
        return ""

    text = (text.strip()
            .lower()
            .replace('“', '"').replace('”', '"')  # Smart quotes
            .replace('‘', "'").replace('’', "'")  # Smart apostrophes
            .replace('—', '-').replace('–', '-')  # Em/en dashes
            .replace('…', '...')
            .rstrip('.'))
    return re.sub(r'\s+', ' ', text)


def create_quote_id(country, lang, author_id, text):
    digest = hashlib.md5(f'{normalize_text(author_id)}|{normalize_text(text)}'.encode('utf-8')).hexdigest()
    return f'{country}{lang}{digest}'


def create_locale_key(country, lang):
    return f'{country}_{lang}'


def format_timestamp(value=None):
    """ISO-8601 UTC timestamp with milliseconds, e.g. 2024-05-01T10:00:00.000Z"""
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value, field='lastFoundAt'):
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise ValidationError(f'"{field}" must be an ISO-8601 date string')
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'"{field}" must be an ISO-8601 date string')
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def build_topic(topic):
    if not isinstance(topic, dict):
        raise ValidationError('"topics" items must be objects')
    for field in ('id', 'name'):
        if not topic.get(field):
            raise ValidationError(f'"topics.{field}" is required')
        if not isinstance(topic[field], str):
            raise ValidationError(f'"topics.{field}" must be a string')
    for field in topic:
        if field not in TOPIC_FIELDS:
            raise ValidationError(f'"topics.{field}" is not allowed')

    return {key: value for key, value in topic.items() if value not in (None, '')}


def build_quote(params):
    """Build a complete quote from creation params.

    Requires author, country, lang, source and text. lastFoundAt defaults to
    now and expiresAt to QUOTE_TTL_DAYS after lastFoundAt.
    """
    if not isinstance(params, dict):
        raise ValidationError('Quote params must be an object')

    author = params.get('author') or {}
    for field in ('country', 'lang', 'text'):
        if not params.get(field):
            raise ValidationError(f'"{field}" is required')
        if not isinstance(params[field], str):
            raise ValidationError(f'"{field}" must be a string')
    if not isinstance(author, dict):
        raise ValidationError('"author" must be an object')
    if not author.get('id') or not author.get('name'):
        raise ValidationError('"author" requires "id" and "name"')
    if not isinstance(author['id'], str) or not isinstance(author['name'], str):
        raise ValidationError('"author.id" and "author.name" must be strings')
    if not isinstance(params.get('source') or {}, dict):
        raise ValidationError('"source" must be an object')
    if not isinstance(params.get('topics') or [], list):
        raise ValidationError('"topics" must be a list')

    country = params['country'].lower()
    lang = params['lang'].lower()
    created_at = datetime.now(timezone.utc)
    last_found_at = parse_timestamp(params['lastFoundAt']) if params.get('lastFoundAt') else created_at

    quote = {
        'id': create_quote_id(country, lang, author['id'], params['text']),
        'author': {'id': author['id'], 'name': author['name']},
        'country': country,
        'lang': lang,
        'source': dict(params.get('source') or {}),
        'text': params['text'].strip(),
        'countViews': params.get('countViews', 0),
        'createdAt': format_timestamp(created_at),
        'lastFoundAt': format_timestamp(last_found_at),
        'expiresAt': params.get('expiresAt') or int((last_found_at + timedelta(days=config.QUOTE_TTL_DAYS)).timestamp()),
    }

    topics = params.get('topics')
    if topics:
        quote['topics'] = [build_topic(topic) for topic in topics]

    validate_quote(quote)
    return quote


def validate_quote(quote):
    """Check a quote is complete before it is created"""
    if not isinstance(quote, dict):
        raise ValidationError('Quote must be an object')

    for field in ('id', 'country', 'lang', 'text', 'lastFoundAt', 'expiresAt'):
        if quote.get(field) in (None, ''):
            raise ValidationError(f'"{field}" is required')

    for field in ('id', 'country', 'lang', 'text'):
        if not isinstance(quote[field], str):
            raise ValidationError(f'"{field}" must be a string')

    for field in ('country', 'lang'):
        if not CODE_PATTERN.match(quote[field]):
            raise ValidationError(f'"{field}" must be a 2 letter lowercase code')

    author = quote.get('author')
    if not isinstance(author, dict) or not author.get('id') or not author.get('name'):
        raise ValidationError('"author" requires "id" and "name"')

    source = quote.get('source')
    if not isinstance(source, dict) or not all(source.get(field) for field in ('host', 'path', 'id')):
        raise ValidationError('"source" requires "host", "path" and "id"')

    topics = quote.get('topics', [])
    if not isinstance(topics, list):
        raise ValidationError('"topics" must be a list')
    for topic in topics:
        build_topic(topic)

    for field in STORAGE_FIELDS:
        if field in quote:
            raise ValidationError(f'"{field}" is not allowed')

    _validate_value('lastFoundAt', quote['lastFoundAt'])
    _validate_value('expiresAt', quote['expiresAt'])
    if 'countViews' in quote:
        _validate_value('countViews', quote['countViews'])


def validate_update(changes):
    """Check a partial update payload of the form {'set': {...}, 'delete': [...]}"""
    if not isinstance(changes, dict):
        raise ValidationError('"value" must be an object')

    for key in changes:
        if key not in ('set', 'delete'):
            raise ValidationError(f'"{key}" is not allowed')

    set_values = changes.get('set')
    delete_fields = changes.get('delete')

    if set_values is None and delete_fields is None:
        raise ValidationError('"value" must contain at least one of [set, delete]')

    if set_values is not None:
        if not isinstance(set_values, dict):
            raise ValidationError('"set" must be an object')
        for field, value in set_values.items():
            if field not in MUTABLE_FIELDS:
                raise ValidationError(f'"{field}" is not allowed')
            _validate_value(field, value)

    if delete_fields is not None:
        if not isinstance(delete_fields, (list, tuple)):
            raise ValidationError('"delete" must be a list')
        for field in delete_fields:
            if field not in REMOVABLE_FIELDS:
                raise ValidationError(f'"{field}" is not allowed')
            if set_values and field in set_values:
                raise ValidationError(f'"{field}" cannot be both set and deleted')


def _validate_value(field, value):
    if field == 'lastFoundAt':
        parse_timestamp(value, field)
    elif field in ('countViews', 'expiresAt'):
        if isinstance(value, bool) or not isinstance(value, (int, Decimal)) or value < 0:
            raise ValidationError(f'"{field}" must be a non-negative integer')


def map_from_quote(quote):
    """Quote -> DynamoDB item, adding the index key attributes"""
    item = {key: value for key, value in quote.items() if value is not None}
    # Range keys sort as strings, so every lastFoundAt is stored in UTC
    item['lastFoundAt'] = format_timestamp(parse_timestamp(quote['lastFoundAt']))
    item['locale'] = create_locale_key(quote['country'], quote['lang'])
    item['authorId'] = quote['author']['id']
    return item


def map_from_partial_quote(values):
    item = {key: value for key, value in values.items() if value is not None}
    if 'lastFoundAt' in item:
        item['lastFoundAt'] = format_timestamp(parse_timestamp(item['lastFoundAt']))
    return item


def map_to_quote(item):
    """DynamoDB item -> quote, dropping storage attributes and Decimals"""
    return {
        key: from_decimal(value)
        for key, value in item.items()
        if key not in STORAGE_FIELDS
    }


def from_decimal(value):
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    if isinstance(value, list):
        return [from_decimal(v) for v in value]
    if isinstance(value, dict):
        return {k: from_decimal(v) for k, v in value.items()}
    return value


def build_topic_quotes(quote_id, last_found_at, expires_at, topics):
    """One TopicQuote item per topic, copying the quote recency and expiry"""
    items = []
    for topic in topics or []:
        item = {
            'topicId': topic['id'],
            'quoteId': quote_id,
            'lastFoundAt': last_found_at,
            'expiresAt': expires_at,
        }
        if topic.get('rel'):
            item['relation'] = topic['rel']
        items.append(item)
    return items

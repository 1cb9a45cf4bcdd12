import logging

from . import config
from .errors import QuoteStoreError, ValidationError
from .quote_model import QuoteModel
from .quotes import (
    build_topic_quotes,
    create_locale_key,
    map_from_partial_quote,
    map_from_quote,
    map_to_quote,
    validate_quote,
    validate_update,
)
from .topic_quote_model import TopicQuoteModel

logger = logging.getLogger(__name__)


class QuoteRepository:
    """Stores quotes in DynamoDB and keeps the per-topic index in sync.

    Each quote is written to the quotes table, then one TopicQuote record is
    put per topic. The two writes are not transactional: a failed TopicQuote
    put is logged and the quote stays created.
    """

    def __init__(self, dynamodb, quotes_table_name=None, topic_quotes_table_name=None):
        self.model = QuoteModel(dynamodb, quotes_table_name or config.QUOTES_TABLE_NAME)
        self.topic_quote_model = TopicQuoteModel(
            dynamodb, topic_quotes_table_name or config.TOPIC_QUOTES_TABLE_NAME
        )

    def create(self, quote):
        validate_quote(quote)

        item = self.model.create(map_from_quote(quote))
        created = map_to_quote(item)

        if created.get('topics'):
            self._put_topic_quotes(created['id'], created['lastFoundAt'], created['expiresAt'], created['topics'])

        return created

    def update(self, quote_id, changes):
        """Apply {'set': {...}, 'delete': [...]} to a quote and return it"""
        validate_update(changes)

        set_values = changes.get('set')
        updated_item = self.model.update(
            {'id': quote_id},
            set_values=set_values and map_from_partial_quote(set_values),
            remove_fields=changes.get('delete'),
        )
        quote = map_to_quote(updated_item)

        if quote.get('topics') and set_values and set_values.get('lastFoundAt'):
            self._put_topic_quotes(quote['id'], quote['lastFoundAt'], quote['expiresAt'], quote['topics'])

        return quote

    def delete(self, quote_id):
        # TopicQuote records are left to expire through TTL
        old_item = self.model.delete({'id': quote_id})
        return old_item is not None

    def exists(self, quote_id):
        return self.get_by_id(quote_id, fields=['id']) is not None

    def get_by_id(self, quote_id, fields=None):
        item = self.model.get({'id': quote_id}, fields=fields)
        if item is None:
            return None
        return map_to_quote(item)

    def get_by_ids(self, ids, fields=None):
        """Get quotes in the order of ids, skipping missing ones"""
        items = self.model.get_items([{'id': quote_id} for quote_id in ids], fields=fields)
        by_id = {item['id']: map_to_quote(item) for item in items}

        return [by_id[quote_id] for quote_id in dict.fromkeys(ids) if quote_id in by_id]

    def latest(self, country, lang, limit=10, last_found_at=None, fields=None):
        result = self.model.query(
            self.model.locale_index_name(),
            create_locale_key(country, lang),
            last_found_at=last_found_at,
            limit=limit,
            order='DESC',
            fields=fields,
        )

        return [map_to_quote(item) for item in result['items']]

    def latest_by_author(self, author_id, country=None, lang=None, limit=10, last_found_at=None, fields=None):
        result = self.model.query(
            self.model.author_index_name(),
            author_id,
            last_found_at=last_found_at,
            limit=limit,
            order='DESC',
            fields=fields,
            filters=self._locale_filter(country, lang),
        )

        return [map_to_quote(item) for item in result['items']]

    def latest_by_topic(self, topic_id, limit=10, last_found_at=None, relation=None, fields=None):
        return self.latest_by_topic_page(
            topic_id, limit=limit, last_found_at=last_found_at, relation=relation, fields=fields
        )['quotes']

    def latest_by_topic_page(self, topic_id, limit=10, last_found_at=None, relation=None, fields=None):
        """Latest quotes on a topic plus the cursor of the next page.

        TopicQuote records whose quote was deleted are skipped, so pages are
        read until `limit` quotes are found or the index is exhausted. The
        cursor is the lastFoundAt of the last TopicQuote read, None at the end.
        """
        quotes = []
        cursor = last_found_at

        while len(quotes) < limit:
            wanted = limit - len(quotes)
            result = self.topic_quote_model.query(
                self.topic_quote_model.topic_last_quotes_index_name(),
                topic_id,
                last_found_at=cursor,
                limit=wanted,
                order='DESC',
                filters=self._relation_filter(relation),
            )
            items = result['items']

            if items:
                quotes.extend(self.get_by_ids([item['quoteId'] for item in items], fields=fields))
                cursor = items[-1]['lastFoundAt']

            if len(items) < wanted or not result['last_key']:
                cursor = None
                break

        return {'quotes': quotes, 'last_found_at': cursor}

    def count(self, country, lang):
        return self.model.count(self.model.locale_index_name(), create_locale_key(country, lang))

    def count_by_author(self, author_id, country=None, lang=None):
        return self.model.count(
            self.model.author_index_name(),
            author_id,
            filters=self._locale_filter(country, lang),
        )

    def count_by_topic(self, topic_id, relation=None):
        return self.topic_quote_model.count(
            self.topic_quote_model.topic_last_quotes_index_name(),
            topic_id,
            filters=self._relation_filter(relation),
        )

    def create_storage(self):
        self.model.create_table()
        self.topic_quote_model.create_table()

    def delete_storage(self):
        self.model.delete_table()
        self.topic_quote_model.delete_table()

    def _put_topic_quotes(self, quote_id, last_found_at, expires_at, topics):
        items = build_topic_quotes(quote_id, last_found_at, expires_at, topics)
        failed = []

        for item in items:
            try:
                self.topic_quote_model.put(item)
            except QuoteStoreError as e:
                failed.append(item['topicId'])
                logger.warning(
                    f"Denormalization gap: could not put topic quote {item['topicId']}/{quote_id}: {str(e)}"
                )

        logger.info(f"Put {len(items) - len(failed)}/{len(items)} topic quotes for quote {quote_id}")
        return failed

    def _locale_filter(self, country, lang):
        if bool(country) != bool(lang):
            raise ValidationError('"country" and "lang" must be given together')
        if country and lang:
            return {'locale': create_locale_key(country, lang)}
        return None

    def _relation_filter(self, relation):
        if relation:
            return {'relation': relation}
        return None

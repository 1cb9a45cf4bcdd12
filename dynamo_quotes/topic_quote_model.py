from .model import DynamoModel

TOPIC_LAST_QUOTES_INDEX_NAME = 'TopicLastQuotesIndex'


class TopicQuoteModel(DynamoModel):
    """One record per (topic, quote) pair, used to list quotes by topic"""

    hash_key = 'topicId'
    range_key = 'quoteId'
    indexes = {
        TOPIC_LAST_QUOTES_INDEX_NAME: {'hash': 'topicId', 'range': 'lastFoundAt'},
    }
    ttl_attribute = 'expiresAt'

    def topic_last_quotes_index_name(self):
        return TOPIC_LAST_QUOTES_INDEX_NAME

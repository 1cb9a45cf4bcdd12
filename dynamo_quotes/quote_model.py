from .model import DynamoModel

LOCALE_INDEX_NAME = 'LocaleLastQuotesIndex'
AUTHOR_INDEX_NAME = 'AuthorLastQuotesIndex'


class QuoteModel(DynamoModel):
    """Primary quote records keyed by quote id.

    Indexes:
        LocaleLastQuotesIndex: locale (country_lang) -> lastFoundAt
        AuthorLastQuotesIndex: authorId -> lastFoundAt
    """

    hash_key = 'id'
    indexes = {
        LOCALE_INDEX_NAME: {'hash': 'locale', 'range': 'lastFoundAt'},
        AUTHOR_INDEX_NAME: {'hash': 'authorId', 'range': 'lastFoundAt'},
    }
    ttl_attribute = 'expiresAt'

    def locale_index_name(self):
        return LOCALE_INDEX_NAME

    def author_index_name(self):
        return AUTHOR_INDEX_NAME

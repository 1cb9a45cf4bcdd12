import logging
import time

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConflictError, NotFoundError, StorageUnavailableError, from_boto_error

logger = logging.getLogger(__name__)

# DynamoDB batch_get_item can handle up to 100 items
BATCH_GET_SIZE = 100
MAX_UNPROCESSED_ATTEMPTS = 5
UNPROCESSED_BACKOFF_SECONDS = 0.05


def build_projection(fields, required=()):
    """Return ProjectionExpression params for the given attribute names"""
    names = list(dict.fromkeys(list(required) + list(fields)))
    placeholders = {f'#p{i}': name for i, name in enumerate(names)}

    return {
        'ProjectionExpression': ', '.join(placeholders),
        'ExpressionAttributeNames': placeholders,
    }


def build_filter(filters):
    """AND together equality conditions for each filter attribute"""
    expression = None
    for name, value in (filters or {}).items():
        condition = Attr(name).eq(value)
        expression = condition if expression is None else expression & condition
    return expression


class DynamoModel:
    """A single DynamoDB table and its global secondary indexes.

    Subclasses declare the table key (hash_key, range_key) and the indexes
    as {index_name: {'hash': attr, 'range': attr}}. All key attributes are
    strings. Items carrying a ttl_attribute expire through DynamoDB TTL.
    """

    hash_key = 'id'
    range_key = None
    indexes = {}
    ttl_attribute = None

    def __init__(self, dynamodb, table_name):
        self.dynamodb = dynamodb
        self.table_name = table_name
        self.table = dynamodb.Table(table_name)

    def key_attributes(self):
        return [self.hash_key] + ([self.range_key] if self.range_key else [])

    def create(self, item):
        """Put the item only if no item with the same key exists"""
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(#hk)',
                ExpressionAttributeNames={'#hk': self.hash_key},
            )
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e, ConflictError) from e

        logger.info(f"Created {self.table_name} item {self._describe_key(item)}")
        return item

    def put(self, item):
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e) from e

        return item

    def get(self, key, fields=None):
        params = {'Key': key}
        if fields:
            params.update(build_projection(fields, self.key_attributes()))

        try:
            response = self.table.get_item(**params)
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e) from e

        return response.get('Item')

    def get_items(self, keys, fields=None):
        """Batch get items by key; the result order is not guaranteed"""
        unique_keys = list({tuple(sorted(key.items())): key for key in keys}.values())
        if not unique_keys:
            return []

        projection = build_projection(fields, self.key_attributes()) if fields else {}
        items = []

        for i in range(0, len(unique_keys), BATCH_GET_SIZE):
            request_items = {
                self.table_name: dict(Keys=unique_keys[i:i + BATCH_GET_SIZE], **projection)
            }
            attempts = 0

            while request_items:
                if attempts >= MAX_UNPROCESSED_ATTEMPTS:
                    raise StorageUnavailableError(
                        f"Batch get on {self.table_name} left unprocessed keys after {attempts} attempts"
                    )
                if attempts:
                    # Exponential backoff before retrying unprocessed keys
                    time.sleep(UNPROCESSED_BACKOFF_SECONDS * 2 ** (attempts - 1))
                attempts += 1

                try:
                    response = self.dynamodb.batch_get_item(RequestItems=request_items)
                except (ClientError, BotoCoreError) as e:
                    raise from_boto_error(e) from e

                items.extend(response['Responses'].get(self.table_name, []))
                request_items = response.get('UnprocessedKeys') or None

        return items

    def update(self, key, set_values=None, remove_fields=None):
        """Update an existing item and return it with all attributes.

        Raises NotFoundError if the key does not exist.
        """
        names = {'#hk': self.hash_key}
        values = {}
        set_clauses = []
        remove_clauses = []

        for i, (name, value) in enumerate((set_values or {}).items()):
            names[f'#s{i}'] = name
            values[f':s{i}'] = value
            set_clauses.append(f'#s{i} = :s{i}')

        for i, name in enumerate(remove_fields or []):
            names[f'#r{i}'] = name
            remove_clauses.append(f'#r{i}')

        if not set_clauses and not remove_clauses:
            item = self.get(key)
            if item is None:
                raise NotFoundError(f"The conditional request failed: {self._describe_key(key)} does not exist")
            return item

        expression = []
        if set_clauses:
            expression.append('SET ' + ', '.join(set_clauses))
        if remove_clauses:
            expression.append('REMOVE ' + ', '.join(remove_clauses))

        params = {
            'Key': key,
            'UpdateExpression': ' '.join(expression),
            'ConditionExpression': 'attribute_exists(#hk)',
            'ExpressionAttributeNames': names,
            'ReturnValues': 'ALL_NEW',
        }
        if values:
            params['ExpressionAttributeValues'] = values

        try:
            response = self.table.update_item(**params)
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e, NotFoundError) from e

        return response['Attributes']

    def delete(self, key):
        """Delete an item and return its previous attributes, if any"""
        try:
            response = self.table.delete_item(Key=key, ReturnValues='ALL_OLD')
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e) from e

        return response.get('Attributes')

    def query(self, index, hash_key, last_found_at=None, limit=10, order='DESC', fields=None, filters=None):
        """Query an index by hash key, ordered by its range key.

        last_found_at is a range key cursor: only items strictly older (DESC)
        or strictly newer (ASC) are returned. Filters are applied by DynamoDB
        after the key condition, so pages are read until `limit` matching
        items are collected or the index is exhausted.
        """
        items = []
        last_key = None

        while True:
            params = self._query_params(index, hash_key, last_found_at, order, filters)
            params['Limit'] = limit - len(items)
            if fields:
                params.update(build_projection(fields, self.key_attributes()))
            if last_key:
                params['ExclusiveStartKey'] = last_key

            try:
                response = self.table.query(**params)
            except (ClientError, BotoCoreError) as e:
                raise from_boto_error(e) from e

            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')

            if len(items) >= limit or not last_key:
                break

        return {'items': items[:limit], 'last_key': last_key}

    def count(self, index, hash_key, filters=None):
        """Count index items by hash key without reading them"""
        total = 0
        last_key = None

        while True:
            params = self._query_params(index, hash_key, None, 'DESC', filters)
            params['Select'] = 'COUNT'
            if last_key:
                params['ExclusiveStartKey'] = last_key

            try:
                response = self.table.query(**params)
            except (ClientError, BotoCoreError) as e:
                raise from_boto_error(e) from e

            total += response.get('Count', 0)
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                break

        return total

    def create_table(self):
        attributes = set(self.key_attributes())
        for index in self.indexes.values():
            attributes.update(index.values())

        key_schema = [{'AttributeName': self.hash_key, 'KeyType': 'HASH'}]
        if self.range_key:
            key_schema.append({'AttributeName': self.range_key, 'KeyType': 'RANGE'})

        params = {
            'TableName': self.table_name,
            'KeySchema': key_schema,
            'AttributeDefinitions': [
                {'AttributeName': name, 'AttributeType': 'S'} for name in sorted(attributes)
            ],
            'BillingMode': 'PAY_PER_REQUEST',
        }
        if self.indexes:
            params['GlobalSecondaryIndexes'] = [
                {
                    'IndexName': name,
                    'KeySchema': [
                        {'AttributeName': index['hash'], 'KeyType': 'HASH'},
                        {'AttributeName': index['range'], 'KeyType': 'RANGE'},
                    ],
                    'Projection': {'ProjectionType': 'ALL'},
                }
                for name, index in self.indexes.items()
            ]

        try:
            table = self.dynamodb.create_table(**params)
            table.wait_until_exists()

            if self.ttl_attribute:
                self.dynamodb.meta.client.update_time_to_live(
                    TableName=self.table_name,
                    TimeToLiveSpecification={'Enabled': True, 'AttributeName': self.ttl_attribute},
                )
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e) from e

        logger.info(f"Created table {self.table_name}")
        self.table = table

    def delete_table(self):
        try:
            self.table.delete()
            self.table.wait_until_not_exists()
        except (ClientError, BotoCoreError) as e:
            raise from_boto_error(e) from e

        logger.info(f"Deleted table {self.table_name}")
        self.table = self.dynamodb.Table(self.table_name)

    def _query_params(self, index, hash_key, last_found_at, order, filters):
        index_keys = self.indexes[index]
        key_condition = Key(index_keys['hash']).eq(hash_key)

        if last_found_at:
            range_key = Key(index_keys['range'])
            key_condition = key_condition & (
                range_key.lt(last_found_at) if order == 'DESC' else range_key.gt(last_found_at)
            )

        params = {
            'IndexName': index,
            'KeyConditionExpression': key_condition,
            'ScanIndexForward': order == 'ASC',
        }

        filter_expression = build_filter(filters)
        if filter_expression is not None:
            params['FilterExpression'] = filter_expression

        return params

    def _describe_key(self, item):
        return '/'.join(str(item.get(name)) for name in self.key_attributes())

from botocore.exceptions import BotoCoreError, ClientError


class QuoteStoreError(Exception):
    """Base class for errors raised by the quote store"""


class ConflictError(QuoteStoreError):
    """A record with the same key already exists"""


class NotFoundError(QuoteStoreError):
    """The record to update does not exist"""


class ValidationError(QuoteStoreError):
    """The payload was rejected before reaching storage"""


class StorageUnavailableError(QuoteStoreError):
    """DynamoDB could not serve the request"""


CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'


def error_code(error):
    return error.response.get('Error', {}).get('Code', '')


def from_boto_error(error, on_condition_failed=None):
    """Translate a botocore failure into a QuoteStoreError.

    on_condition_failed is the error class raised when the failure is a
    ConditionalCheckFailedException (ConflictError for puts, NotFoundError
    for updates).
    """
    if isinstance(error, ClientError):
        code = error_code(error)
        message = error.response.get('Error', {}).get('Message', str(error))

        if code == CONDITIONAL_CHECK_FAILED and on_condition_failed:
            return on_condition_failed(f'The conditional request failed: {message}')
        if code == 'ValidationException':
            return ValidationError(message)
        return StorageUnavailableError(f'{code}: {message}')

    if isinstance(error, BotoCoreError):
        return StorageUnavailableError(str(error))

    return error

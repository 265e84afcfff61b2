"""
Error taxonomy for the mailbox monitor and the DRF handler that renders it.

Every error the engine raises towards a caller derives from ``JobMailError``
and carries a stable ``code`` plus the HTTP status the REST layer answers with.
"""
import logging

from rest_framework import exceptions as drf_exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class JobMailError(Exception):
    """Base class for caller-visible mailbox monitor errors."""
    code = 'jobmail_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Mailbox monitor error'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class MailboxUnavailable(JobMailError):
    """Mailbox could not be reached (auth, network, timeout). Retried next tick."""
    code = 'mailbox_unavailable'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'Mailbox is unavailable. The check will be retried.'

    def __init__(self, message=None, retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after


class AlreadyRunning(JobMailError):
    code = 'already_running'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'A mailbox check is already running for this user.'


class AlreadyActive(JobMailError):
    code = 'already_active'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Email monitoring is already active.'


class PersistenceFailure(JobMailError):
    """The cycle's database work failed and was rolled back. Safe to retry."""
    code = 'persistence_failure'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Could not save mailbox results. Nothing was applied.'


class EmailEventNotFound(JobMailError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Email event not found'


class InvalidMonitoringRequest(JobMailError):
    code = 'validation_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid monitoring request'


def _collect_messages_from_response_data(response_data):
    """Build a list of human-readable messages from DRF error response data."""
    messages = []
    if isinstance(response_data, dict):
        # DRF often returns {'field': ['msg']} or {'detail': 'msg'}
        if 'detail' in response_data and not isinstance(response_data.get('detail'), (dict, list)):
            messages.append(str(response_data['detail']))
        for field, value in response_data.items():
            if field == 'detail':
                continue
            if isinstance(value, (list, tuple)) and value:
                msg = str(value[0])
            else:
                msg = str(value)
            field_label = str(field).replace('_', ' ').capitalize()
            messages.append(f"{field_label}: {msg}")
    elif isinstance(response_data, (list, tuple)):
        messages.extend(str(v) for v in response_data if v)
    elif response_data:
        messages.append(str(response_data))
    return messages


def custom_exception_handler(exc, context):
    """
    Exception handler that provides a consistent error response format.

    Returns:
        Response with format:
        {
            "error": {
                "code": "error_code",
                "message": "User-friendly error message",
            }
        }
    """
    if isinstance(exc, JobMailError):
        return Response(
            {'error': {'code': exc.code, 'message': exc.message}},
            status=exc.status_code,
        )

    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is None:
        # Unhandled exceptions propagate to Django's 500 handling
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return None

    # Ensure auth failures consistently return 401 so clients can re-auth.
    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        response.status_code = status.HTTP_401_UNAUTHORIZED

    messages = _collect_messages_from_response_data(response.data)
    custom_response_data = {
        'error': {
            'code': get_error_code(exc, response.status_code),
            'message': messages[0] if messages else 'An error occurred',
        }
    }
    if len(messages) > 1:
        custom_response_data['error']['messages'] = messages
    response.data = custom_response_data
    return response


def get_error_code(exc, status_code):
    """Generate error code from exception."""
    if hasattr(exc, 'default_code'):
        return exc.default_code

    code_map = {
        400: 'bad_request',
        401: 'unauthorized',
        403: 'forbidden',
        404: 'not_found',
        405: 'method_not_allowed',
        409: 'conflict',
        429: 'too_many_requests',
        500: 'internal_server_error',
    }

    return code_map.get(status_code, 'error')

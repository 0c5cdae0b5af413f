import json

from django.middleware.csrf import CsrfViewMiddleware
from django.views.decorators.csrf import csrf_exempt

from accounts.utils import profile_for
from core.api import api_error, api_success
from core.logging_utils import get_vault_logger
from core.middleware import get_client_ip
from vault.exceptions import OperationFailedError, ValidationError
from vault.schemas import SensitiveRecord
from vault.secure_storage import get_secure_storage

# Get centralized logger
logger = get_vault_logger()

UNAUTHORIZED_MESSAGE = 'Unauthorized: You must be logged in to access this resource'
CSRF_FAILED_MESSAGE = 'Forbidden: CSRF verification failed'

SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS', 'TRACE')


def _parse_json_object(request):
    """Return the decoded request body if it is a JSON object, otherwise None."""
    try:
        body = json.loads(request.body or b'null')
    except (ValueError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _validated_record(request, invalid_message):
    """Return ``(record, None)`` or ``(None, error_response)`` for the request body."""
    payload = _parse_json_object(request)
    if payload is None:
        return None, api_error(invalid_message, status=400, no_store=True)
    try:
        return SensitiveRecord.parse(payload), None
    except ValidationError as e:
        logger.warning("Rejected sensitive data payload", request.user, extra_data={"error_count": len(e.errors)})
        return None, api_error(invalid_message, status=400, details=e.errors, no_store=True)


def _handle_get_data(request):
    """Handle GET requests to retrieve sensitive user data."""
    try:
        record = get_secure_storage().get_sensitive_data(request.user.pk)
    except OperationFailedError as e:
        logger.error("Error retrieving sensitive data", request.user, extra_data={"cause": type(e.__cause__).__name__})
        return api_error('Failed to retrieve sensitive data', status=500, no_store=True)

    logger.user_activity("sensitive_data_read", request.user)
    return api_success(record.to_document() if record is not None else {}, no_store=True)


def _handle_save_data(request):
    """Handle POST requests to save new sensitive user data."""
    record, error_response = _validated_record(request, 'Invalid data format')
    if error_response is not None:
        return error_response

    try:
        get_secure_storage().save_sensitive_data(request.user.pk, record, profile=profile_for(request.user))
    except OperationFailedError as e:
        logger.error("Error saving sensitive data", request.user, extra_data={"cause": type(e.__cause__).__name__})
        return api_error('Failed to save sensitive data', status=500, no_store=True)

    logger.user_activity("sensitive_data_saved", request.user)
    return api_success({'message': 'Sensitive data saved successfully'}, status=201, no_store=True)


def _handle_update_data(request):
    """Handle PATCH requests to update existing sensitive user data."""
    updates, error_response = _validated_record(request, 'Invalid update format')
    if error_response is not None:
        return error_response

    try:
        get_secure_storage().update_sensitive_data(request.user.pk, updates, profile=profile_for(request.user))
    except OperationFailedError as e:
        logger.error("Error updating sensitive data", request.user, extra_data={"cause": type(e.__cause__).__name__})
        return api_error('Failed to update sensitive data', status=500, no_store=True)

    logger.user_activity("sensitive_data_updated", request.user)
    return api_success({'message': 'Sensitive data updated successfully'}, no_store=True)


def _handle_delete_data(request):
    """Handle DELETE requests to remove sensitive user data."""
    try:
        get_secure_storage().delete_sensitive_data(request.user.pk)
    except OperationFailedError as e:
        logger.error("Error deleting sensitive data", request.user, extra_data={"cause": type(e.__cause__).__name__})
        return api_error('Failed to delete sensitive data', status=500, no_store=True)

    logger.user_activity("sensitive_data_deleted", request.user)
    return api_success({'message': 'Sensitive data deleted successfully'}, no_store=True)


METHOD_HANDLERS = {
    'GET': _handle_get_data,
    'POST': _handle_save_data,
    'PATCH': _handle_update_data,
    'DELETE': _handle_delete_data,
}


def _csrf_rejected(request):
    """Run the CSRF check the middleware skipped; True when the request must be refused."""
    if request.method in SAFE_METHODS:
        return False
    rejection = CsrfViewMiddleware(lambda req: None).process_view(request, None, (), {})
    return rejection is not None


@csrf_exempt
def sensitive_data(request):
    """
    API endpoint for the signed-in user's sensitive data (GET, POST, PATCH, DELETE).

    CSRF is checked after authentication and the method; a failed check returns
    the JSON envelope with status 403.
    """
    try:
        if not request.user.is_authenticated:
            logger.security_event(
                "Unauthenticated sensitive data access attempt",
                extra_data={"ip": get_client_ip(request), "method": request.method},
            )
            return api_error(UNAUTHORIZED_MESSAGE, status=401, no_store=True)

        handler = METHOD_HANDLERS.get(request.method)
        if handler is None:
            return api_error(
                'Method not allowed',
                status=405,
                headers={'Allow': ', '.join(METHOD_HANDLERS)},
                no_store=True,
            )

        if _csrf_rejected(request):
            logger.security_event(
                "CSRF verification failed for sensitive data request",
                request.user,
                extra_data={"ip": get_client_ip(request), "method": request.method},
            )
            return api_error(CSRF_FAILED_MESSAGE, status=403, no_store=True)

        return handler(request)

    except Exception:
        logger.exception("Error handling sensitive data request", extra_data={"method": request.method})
        logger.critical("Unhandled error in sensitive data endpoint")
        return api_error('Internal server error', status=500, no_store=True)

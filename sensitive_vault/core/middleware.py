import contextvars
import logging
import uuid
from ipaddress import ip_address, ip_network

from django.conf import settings

REQUEST_ID_HEADER = 'X-Request-ID'

_request_context: contextvars.ContextVar = contextvars.ContextVar('request_context', default=None)


def get_request_context():
    """Return a copy of the current request's logging context (empty outside requests)."""
    context = _request_context.get()
    return dict(context) if context else {}


def _normalize_ip(candidate):
    """Return a cleaned IP address string or ``None`` if invalid."""
    if not candidate:
        return None

    value = candidate.strip().strip('"')

    # Forwarded header values e.g. for="[2001:db8::1]:1234"
    if value.lower().startswith('for='):
        value = value[4:].strip('"')

    if value.startswith('[') and ']' in value:
        value = value[value.index('[') + 1:value.index(']')]

    if value.startswith('::ffff:'):
        value = value.split('::ffff:')[-1]

    # IPv4 host:port
    if value.count(':') == 1 and '.' in value:
        value = value.partition(':')[0]

    try:
        return str(ip_address(value))
    except ValueError:
        return None


def _remote_addr_is_trusted(meta):
    remote_addr = _normalize_ip((meta or {}).get('REMOTE_ADDR'))
    if not remote_addr:
        return False
    candidate = ip_address(remote_addr)
    for network in getattr(settings, 'TRUSTED_PROXY_IPS', ()):
        try:
            network_obj = ip_network(network, strict=False) if isinstance(network, str) else network
        except ValueError:
            continue
        if candidate in network_obj:
            return True
    return False


def _candidate_ips_from_request(request):
    """Yield potential client IP addresses, proxy headers first when the proxy is trusted."""
    meta = getattr(request, 'META', {}) or {}

    if _remote_addr_is_trusted(meta):
        forwarded_for = meta.get('HTTP_X_FORWARDED_FOR')
        if forwarded_for:
            for part in forwarded_for.split(','):
                cleaned = _normalize_ip(part)
                if cleaned:
                    yield cleaned

        forwarded_header = meta.get('HTTP_FORWARDED')
        if forwarded_header:
            for segment in forwarded_header.replace(',', ';').split(';'):
                cleaned = _normalize_ip(segment)
                if cleaned:
                    yield cleaned

        cleaned = _normalize_ip(meta.get('HTTP_X_REAL_IP'))
        if cleaned:
            yield cleaned

    cleaned_remote = _normalize_ip(meta.get('REMOTE_ADDR'))
    if cleaned_remote:
        yield cleaned_remote


def get_client_ip(request):
    """Return the most appropriate client IP address for the request."""
    fallback_candidate = None

    for candidate in _candidate_ips_from_request(request):
        if ip_address(candidate).is_global:
            return candidate
        if fallback_candidate is None:
            fallback_candidate = candidate

    return fallback_candidate or 'unknown'


def _user_id_for(request):
    user = getattr(request, 'user', None)
    if getattr(user, 'is_authenticated', False):
        return str(getattr(user, 'id', getattr(user, 'pk', 'anonymous')))
    return 'anonymous'


class RequestContextFilter(logging.Filter):
    """Copy the active request context onto every log record."""

    def filter(self, record):
        context = _request_context.get() or {}
        record.request_id = context.get('request_id', '-')
        record.user_id = context.get('user_id', 'anonymous')
        record.ip = context.get('ip', 'unknown')
        if context.get('path'):
            record.path = context['path']
        if context.get('method'):
            record.http_method = context['method']
        return True


class LoggingMiddleware:
    """Attach a request id and expose request context to log records."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        incoming = (request.META.get('HTTP_X_REQUEST_ID') or '').strip()
        request_id = incoming[:64] if incoming else uuid.uuid4().hex
        request.request_id = request_id

        token = _request_context.set({
            'request_id': request_id,
            'user_id': _user_id_for(request),
            'ip': get_client_ip(request),
            'method': request.method,
            'path': request.path,
        })
        try:
            response = self.get_response(request)
        finally:
            _request_context.reset(token)

        response[REQUEST_ID_HEADER] = request_id
        return response

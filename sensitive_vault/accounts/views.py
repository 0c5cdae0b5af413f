"""Session endpoints that sit beside the allauth sign-in flow."""

from django.contrib.auth import logout
from django.shortcuts import redirect
from django.views.decorators.http import require_GET, require_http_methods

from accounts.utils import session_payload
from core.api import api_success
from core.logging_utils import get_accounts_logger

# Get centralized logger
logger = get_accounts_logger()


@require_http_methods(["GET", "POST"])
def signout_view(request):
    if request.user.is_authenticated:
        logger.info("User signing out", request.user)
    logout(request)
    return redirect('/')


@require_GET
def session_view(request):
    """Return the current session's user, or ``null`` data when signed out."""
    user = session_payload(request.user)
    return api_success({'user': user} if user is not None else None, no_store=True)

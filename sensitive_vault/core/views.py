from django.shortcuts import redirect
from django.views.decorators.http import require_GET

from core.api import api_success
from core.logging_utils import get_core_logger
from core.middleware import get_client_ip

# Get centralized logger
logger = get_core_logger()


@require_GET
def health(request):
    logger.debug("Health check", extra_data={"ip": get_client_ip(request)})
    return api_success({"message": "healthy"})


def root(request):
    logger.info("Root redirect accessed", extra_data={"ip": get_client_ip(request)})
    if request.user.is_authenticated:
        logger.user_activity("root_access", request.user)
        return redirect("/api/user/sensitive-data")
    return redirect("/accounts/login/")

"""
Signal handlers for django-allauth events to provide comprehensive logging
"""

from django.dispatch import receiver
from django.contrib.auth.signals import user_logged_in, user_logged_out, user_login_failed
from allauth.account.signals import user_signed_up
from core.logging_utils import get_accounts_logger
from core.middleware import get_client_ip

logger = get_accounts_logger()


@receiver(user_logged_in)
def log_user_login(sender, request, user, **kwargs):
    """Log when a user successfully logs in"""
    ip = get_client_ip(request) if request else "unknown"
    logger.user_activity("user_logged_in_signal", user, f"User login signal received from IP: {ip}")


@receiver(user_logged_out)
def log_user_logout(sender, request, user, **kwargs):
    """Log when a user logs out"""
    if user:
        logger.user_activity("user_logged_out_signal", user, "User logout signal received")
    else:
        ip = get_client_ip(request) if request else "unknown"
        logger.info("Anonymous user logout signal received", extra_data={"ip": ip})


@receiver(user_login_failed)
def log_login_failure(sender, credentials, request=None, **kwargs):
    """Log failed login attempts"""
    email = credentials.get('username') or credentials.get('email', 'unknown')
    ip = get_client_ip(request) if request else "unknown"
    logger.security_event("Login failed - Django signal", extra_data={
        "email": email,
        "ip": ip,
        "credentials_keys": list(credentials.keys())
    })


@receiver(user_signed_up)
def log_user_signup(sender, request, user, **kwargs):
    """Log when a new user signs up"""
    ip = get_client_ip(request) if request else "unknown"
    logger.user_activity("user_signed_up", user, f"User registration signal received from IP: {ip}")

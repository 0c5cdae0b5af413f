"""
Centralized logging utilities for the sensitive data vault.
Provides consistent logging patterns and helper functions.
"""

import logging
from typing import Optional, Dict, Any, Tuple

SECURITY_LOGGER_NAME = 'django.security'
ALERTS_LOGGER_NAME = 'alerts'


def describe_user(user: Optional[Any]) -> str:
    """Return a short, non-sensitive label for a user or user id."""
    if user is None:
        return 'anonymous'
    if isinstance(user, (str, int)):
        return f"id={user}"
    email = getattr(user, 'email', None)
    if email:
        return email
    identifier = getattr(user, 'id', getattr(user, 'pk', None))
    return f"id={identifier}" if identifier is not None else 'unknown'


class AppLogger:
    """Centralized logger utility for consistent logging across the application."""

    def __init__(self, logger_name: str):
        """
        Initialize the app logger.

        Args:
            logger_name: Name of the logger (e.g., 'accounts', 'vault', 'core')
        """
        self.logger = logging.getLogger(logger_name)
        self.security_logger = logging.getLogger(SECURITY_LOGGER_NAME)
        self.alerts_logger = logging.getLogger(ALERTS_LOGGER_NAME)

    def debug(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        self._emit(self.logger, logging.DEBUG, message, user, extra_data)

    def info(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        self._emit(self.logger, logging.INFO, message, user, extra_data)

    def warning(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        self._emit(self.logger, logging.WARNING, message, user, extra_data)

    def error(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        self._emit(self.logger, logging.ERROR, message, user, extra_data)

    def exception(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        """Log an error with the active exception's traceback attached."""
        self._emit(self.logger, logging.ERROR, message, user, extra_data, exc_info=True)

    def critical(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        """Log a critical message and also send to alerts."""
        self._emit(self.logger, logging.CRITICAL, message, user, extra_data)
        self._emit(self.alerts_logger, logging.ERROR, f"CRITICAL: {message}", user, extra_data)

    def security_event(self, message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None):
        """Log a security-related event directly to security log."""
        self._emit(self.security_logger, logging.WARNING, f"SECURITY EVENT: {message}", user, extra_data)

    def user_activity(self, action: str, user: Any, details: Optional[str] = None):
        """Log user activity with consistent format."""
        message = f"User {describe_user(user)} performed action: {action}"
        if details:
            message += f" - {details}"
        self.info(message, user)

    def encryption_event(
        self,
        event: str,
        user: Optional[Any] = None,
        success: bool = True,
        extra_data: Optional[Dict[str, Any]] = None,
    ):
        """Log encryption and storage events for a user's sensitive data."""
        status = "SUCCESS" if success else "FAILURE"
        level = logging.INFO if success else logging.ERROR
        self._emit(self.logger, level, f"ENCRYPTION {status}: {event}", user, extra_data)

    def _emit(
        self,
        target: logging.Logger,
        level: int,
        message: str,
        user: Optional[Any],
        extra_data: Optional[Dict[str, Any]],
        exc_info: bool = False,
    ):
        if not target.isEnabledFor(level):
            return
        formatted_message, context = self._prepare_message(message, user, extra_data)
        kwargs: Dict[str, Any] = {'exc_info': exc_info}
        if context:
            kwargs['extra'] = {'context': context}
        target.log(level, formatted_message, **kwargs)

    def _prepare_message(
        self, message: str, user: Optional[Any], extra_data: Optional[Dict[str, Any]]
    ) -> Tuple[str, Dict[str, Any]]:
        """Return the formatted message and logging context."""
        return self._format_message(message, user, extra_data), self._build_context(user, extra_data)

    @staticmethod
    def _build_context(user: Optional[Any], extra_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        context: Dict[str, Any] = {}
        if isinstance(user, (str, int)):
            context['user_pk'] = str(user)
        elif user is not None:
            email = getattr(user, 'email', None)
            if email:
                context['user_email'] = email
            identifier = getattr(user, 'id', getattr(user, 'pk', None))
            if identifier is not None:
                context['user_pk'] = str(identifier)
        if extra_data:
            context.update(extra_data)
        return context

    @staticmethod
    def _format_message(message: str, user: Optional[Any] = None, extra_data: Optional[Dict[str, Any]] = None) -> str:
        """Format message with user info and extra data."""
        formatted_message = f"[User: {describe_user(user)}] {message}" if user is not None else message
        if extra_data:
            extra_info = ", ".join(f"{k}: {v}" for k, v in extra_data.items())
            formatted_message += f" | Extra: {extra_info}"
        return formatted_message


# Convenience functions for getting loggers
def get_accounts_logger():
    """Get the accounts logger."""
    return AppLogger('accounts')


def get_vault_logger():
    """Get the vault logger."""
    return AppLogger('vault')


def get_core_logger():
    """Get the core logger."""
    return AppLogger('core')


def get_security_logger():
    """Get a logger specifically for security events."""
    return AppLogger(SECURITY_LOGGER_NAME)

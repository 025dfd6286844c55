"""Error taxonomy for the analytics and notification engine."""

import functools

from sqlalchemy.exc import SQLAlchemyError


class LiftPulseError(Exception):
    """Base class for application errors."""


class TransientDataError(LiftPulseError):
    """A store query failed for one user or rule; the pass continues."""


class DeliveryError(LiftPulseError):
    """The push provider rejected or failed a message."""


class ConfigurationError(LiftPulseError):
    """Missing or invalid provider configuration. Fatal at process start."""


def translate_data_errors(func):
    """Re-raise SQLAlchemy failures from a query helper as TransientDataError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise TransientDataError(f"{func.__name__} failed: {exc}") from exc

    return wrapper

"""
Sentry configuration for error tracking.

Captures terminal job failures and callback crashes with job context.
"""
import sentry_sdk

from jobwatch.config import settings
from jobwatch.logging_config import get_logger

logger = get_logger(component="sentry")


def configure_sentry():
    """
    Initialize Sentry.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", dsn_prefix=dsn[:20])


def capture_exception(exc_info=None, **tags):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            callback(event)
        except Exception:
            capture_exception(job_id=job_id)
    """
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_exception(exc_info)


def capture_message(message, level="info", **tags):
    """
    Capture a message to Sentry.

    Usage:
        capture_message("channel_error", level="warning", job_id=job_id)
    """
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_message(message, level=level)

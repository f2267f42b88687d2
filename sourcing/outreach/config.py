"""
Configuration for the outreach system.

These can be overridden via environment variables.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment."""
    val = os.getenv(key, str(default)).lower()
    return val in ('true', '1', 'yes', 'on')


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_list(key: str, default: str = "") -> list:
    """Get a comma-separated list from environment."""
    val = os.getenv(key, default)
    return [x.strip() for x in val.split(",") if x.strip()]


OUTREACH_CONFIG = {
    # Sender details
    'SENDER_NAME': os.getenv('OUTREACH_SENDER_NAME', 'Your Name'),
    'SENDER_EMAIL': os.getenv('OUTREACH_SENDER_EMAIL', os.getenv('SMTP_USER', '')),

    # SMTP
    'SMTP_HOST': os.getenv('OUTREACH_SMTP_HOST', os.getenv('SMTP_HOST', 'smtp.gmail.com')),
    'SMTP_PORT': _get_int('OUTREACH_SMTP_PORT', _get_int('SMTP_PORT', 587)),
    'SMTP_USER': os.getenv('OUTREACH_SMTP_USER', os.getenv('SMTP_USER', '')),
    'SMTP_PASSWORD': os.getenv('OUTREACH_SMTP_PASSWORD', os.getenv('SMTP_PASSWORD', '')),
    'SMTP_TIMEOUT_SECONDS': _get_int('OUTREACH_SMTP_TIMEOUT', 30),

    # Channels the delivery collaborator can send; others stay queued for manual sending
    'DELIVERY_CHANNELS': _get_list('OUTREACH_DELIVERY_CHANNELS', 'email'),

    # Queue defaults
    'DEFAULT_PRIORITY': _get_int('OUTREACH_DEFAULT_PRIORITY', 100),
    'MAX_ATTEMPTS': _get_int('OUTREACH_MAX_ATTEMPTS', 3),
    'BATCH_DELAY_MINUTES': _get_int('OUTREACH_BATCH_DELAY_MINUTES', 30),

    # Retry backoff: base * 2^(attempts - 1) minutes
    'RETRY_BASE_MINUTES': _get_int('OUTREACH_RETRY_BASE_MINUTES', 30),

    # Processor cadence (one item per user per cycle)
    'PROCESS_INTERVAL_MINUTES': _get_int('OUTREACH_PROCESS_INTERVAL_MINUTES', 30),

    # Items left in 'sending' longer than this are treated as interrupted deliveries
    'STALE_SENDING_MINUTES': _get_int('OUTREACH_STALE_SENDING_MINUTES', 60),

    # Dry run mode (don't actually send)
    'DRY_RUN': _get_bool('OUTREACH_DRY_RUN', False),

    # Summary email recipient
    'SUMMARY_EMAIL_TO': os.getenv('OUTREACH_SUMMARY_TO', os.getenv('EMAIL_TO', '')),

    # Test mode - redirect all outreach to this email instead of real recipients
    'TEST_RECIPIENT_OVERRIDE': os.getenv('OUTREACH_TEST_RECIPIENT', ''),
}


def get_config() -> dict:
    """Get the outreach configuration."""
    return OUTREACH_CONFIG.copy()


def validate_config() -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    if not OUTREACH_CONFIG['SENDER_EMAIL']:
        errors.append("OUTREACH_SENDER_EMAIL or SMTP_USER not set")

    if not OUTREACH_CONFIG['SMTP_USER']:
        errors.append("OUTREACH_SMTP_USER or SMTP_USER not set")

    if not OUTREACH_CONFIG['SMTP_PASSWORD']:
        errors.append("OUTREACH_SMTP_PASSWORD or SMTP_PASSWORD not set")

    if not OUTREACH_CONFIG['SENDER_NAME'] or OUTREACH_CONFIG['SENDER_NAME'] == 'Your Name':
        errors.append("OUTREACH_SENDER_NAME should be set to your actual name")

    if OUTREACH_CONFIG['MAX_ATTEMPTS'] < 1:
        errors.append("OUTREACH_MAX_ATTEMPTS must be at least 1")

    return errors

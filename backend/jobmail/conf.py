"""App-level settings for the mailbox monitor.

Deployments override any key through the ``JOBMAIL`` dict in Django settings;
everything else falls back to ``DEFAULTS``.
"""
import os

from django.conf import settings

DEFAULTS = {
    # Dotted path of the MailboxClient implementation
    'MAILBOX_CLIENT': 'jobmail.mailbox.GmailMailboxClient',
    # Callable(user) -> OAuth access token for the Gmail client
    'GMAIL_TOKEN_PROVIDER': 'jobmail.mailbox.settings_token_provider',
    'GMAIL_ACCESS_TOKEN': '',
    # Extra Gmail search terms appended to the after:<epoch> filter
    'GMAIL_QUERY': '',
    'GMAIL_PAGE_SIZE': 100,
    'CLASSIFIER_RULES': os.path.join(os.path.dirname(__file__), 'rules', 'email_rules.json'),
    'MIN_CONFIDENCE': 40,
    'DEDUP_WINDOW_DAYS': 0,
    'DEFAULT_INTERVAL_MINUTES': 5,
    'MIN_INTERVAL_MINUTES': 1,
    'MAX_INTERVAL_MINUTES': 24 * 60,
    # None means "one polling interval"
    'FETCH_TIMEOUT_SECONDS': None,
    'RUN_LOCK_STALE_SECONDS': 60 * 60,
    'BODY_EXCERPT_CHARS': 2000,
}


def get_setting(name):
    """Return ``JOBMAIL[name]`` from Django settings, or the built-in default."""
    overrides = getattr(settings, 'JOBMAIL', None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]

"""Duplicate detection for incoming mailbox messages.

A message with a ``message_id`` is a duplicate iff the user already has an
event with that id. Without one, the fallback key is
``normalized subject | bare sender address | UTC day``.
"""
import logging
import re
from datetime import timedelta, timezone as dt_timezone
from email.utils import parseaddr

from jobmail.conf import get_setting
from jobmail.models import EmailEvent

logger = logging.getLogger(__name__)


def normalize(value):
    """Lowercase, collapse whitespace, strip."""
    return re.sub(r'\s+', ' ', (value or '').lower()).strip()


def normalize_address(from_header):
    """Reduce ``"Acme Talent <jobs@acme.com>"`` to ``jobs@acme.com``."""
    _, address = parseaddr(from_header or '')
    return normalize(address or from_header)


def day_bucket(received_at):
    return received_at.astimezone(dt_timezone.utc).strftime('%Y-%m-%d')


def build_dedup_key(subject, from_address, received_at):
    return f"{normalize(subject)}|{normalize_address(from_address)}|{day_bucket(received_at)}"


def candidate_keys(raw, window_days=None):
    """Dedup keys for every day bucket within the configured window."""
    if window_days is None:
        window_days = get_setting('DEDUP_WINDOW_DAYS')
    return [
        build_dedup_key(raw.subject, raw.from_address, raw.received_at + timedelta(days=offset))
        for offset in range(-window_days, window_days + 1)
    ]


def is_duplicate(user, raw):
    events = EmailEvent.objects.filter(user=user)
    if raw.message_id:
        return events.filter(message_id=raw.message_id).exists()
    return events.filter(dedup_key__in=candidate_keys(raw)).exists()

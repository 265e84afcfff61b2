"""Mailbox access for the monitor.

``MailboxClient`` is the contract the engine consumes: ``fetch(user, since)``
yields ``RawMessage`` objects lazily, in no particular order, possibly
repeating messages returned by earlier calls. Any auth/network failure or an
elapsed timeout surfaces as ``MailboxUnavailable``.

``GmailMailboxClient`` implements it against the Gmail REST API.
"""
import base64
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from email.utils import parsedate_to_datetime
from typing import Iterator, Optional

import requests
from django.utils import timezone
from django.utils.module_loading import import_string

from jobmail.conf import get_setting
from jobmail.exceptions import MailboxUnavailable

logger = logging.getLogger(__name__)

GMAIL_API_BASE = 'https://gmail.googleapis.com/gmail/v1'


@dataclass(frozen=True)
class RawMessage:
    """One message as delivered by a mailbox, before any processing."""
    message_id: Optional[str]
    subject: str
    from_address: str
    received_at: datetime
    body_text: str = ''


class MailboxClient(ABC):
    """Consumed interface: a finite, lazy, at-least-once feed of raw messages."""

    @abstractmethod
    def fetch(self, user, since: Optional[datetime], timeout: Optional[float] = None) -> Iterator[RawMessage]:
        """Yield messages received at or after ``since`` (everything when None)."""


def get_mailbox_client() -> MailboxClient:
    """Instantiate the configured ``JOBMAIL['MAILBOX_CLIENT']`` class."""
    client_cls = import_string(get_setting('MAILBOX_CLIENT'))
    return client_cls()


def settings_token_provider(user):
    """Default token provider: a single access token from settings."""
    token = get_setting('GMAIL_ACCESS_TOKEN')
    if not token:
        raise MailboxUnavailable('No Gmail credentials configured. Please reconnect your Gmail account.')
    return token


class MalformedMessage(ValueError):
    """A mailbox returned a message that cannot be processed."""


class _Deadline:
    def __init__(self, timeout):
        self.timeout = timeout
        self.expires_at = time.monotonic() + timeout if timeout else None

    def remaining(self, cap):
        if self.expires_at is None:
            return cap
        left = self.expires_at - time.monotonic()
        if left <= 0:
            raise MailboxUnavailable(f'Mailbox fetch timed out after {self.timeout:.0f}s')
        return min(cap, left)


class GmailMailboxClient(MailboxClient):
    """Gmail REST client with retry logic for rate limits and server errors."""

    def __init__(self, token_provider=None, max_retries=3, page_size=None, session=None):
        if token_provider is None:
            token_provider = import_string(get_setting('GMAIL_TOKEN_PROVIDER'))
        self.token_provider = token_provider
        self.max_retries = max_retries
        self.page_size = page_size or get_setting('GMAIL_PAGE_SIZE')
        self.session = session or requests.Session()

    def fetch(self, user, since=None, timeout=None):
        deadline = _Deadline(timeout)
        access_token = self.token_provider(user)
        query = build_query(since, get_setting('GMAIL_QUERY'))

        page_token = None
        while True:
            params = {'q': query, 'maxResults': self.page_size}
            if page_token:
                params['pageToken'] = page_token
            listing = self._get(access_token, '/users/me/messages', params, deadline)

            for ref in listing.get('messages', []):
                detail = self._get(access_token, f"/users/me/messages/{ref['id']}", {'format': 'full'}, deadline)
                try:
                    yield parse_gmail_message(detail)
                except MalformedMessage as e:
                    logger.warning(f'Skipping malformed Gmail message: {e}')

            page_token = listing.get('nextPageToken')
            if not page_token:
                break

    def _get(self, access_token, endpoint, params, deadline):
        url = f"{GMAIL_API_BASE}{endpoint}"
        headers = {'Authorization': f'Bearer {access_token}'}

        for attempt in range(self.max_retries):
            try:
                resp = self.session.get(url, headers=headers, params=params, timeout=deadline.remaining(15))
            except requests.exceptions.Timeout:
                if attempt < self.max_retries - 1:
                    logger.warning(f'Gmail API timeout on {endpoint}. Retrying... (attempt {attempt + 1}/{self.max_retries})')
                    time.sleep(min(2 ** attempt, deadline.remaining(2 ** attempt)))
                    continue
                raise MailboxUnavailable('Gmail API request timed out after multiple retries')
            except requests.exceptions.RequestException as e:
                logger.error(f'Gmail API request failed: {e}')
                raise MailboxUnavailable(f'Network error: {e}')

            if resp.status_code == 200:
                return resp.json()

            if resp.status_code == 401:
                logger.error('Gmail API authentication failed: token may be expired or invalid')
                raise MailboxUnavailable('Authentication failed. Please reconnect your Gmail account.')

            if resp.status_code == 403:
                error_data = resp.json() if resp.content else {}
                error_message = error_data.get('error', {}).get('message', 'Permission denied')
                logger.error(f'Gmail API permission error: {error_message}')
                raise MailboxUnavailable(f'Gmail API permission error: {error_message}')

            if resp.status_code == 429:
                retry_after = int(resp.headers.get('Retry-After', 60))
                if attempt < self.max_retries - 1 and retry_after <= deadline.remaining(retry_after):
                    logger.warning(f'Gmail API rate limit hit. Retry after {retry_after} seconds')
                    time.sleep(retry_after)
                    continue
                raise MailboxUnavailable(
                    f'Rate limit exceeded. Try again in {retry_after} seconds.',
                    retry_after=retry_after
                )

            if resp.status_code >= 500 and attempt < self.max_retries - 1:
                delay = 2 ** attempt  # 1s, 2s, 4s
                logger.warning(f'Gmail API server error {resp.status_code}. Retrying in {delay}s...')
                time.sleep(min(delay, deadline.remaining(delay)))
                continue

            raise MailboxUnavailable(f"Gmail API returned {resp.status_code}: {resp.text[:500]}")

        raise MailboxUnavailable('Failed to reach Gmail after maximum retries')


def build_query(since, extra=''):
    """Gmail search query for messages newer than ``since``."""
    parts = []
    if since is not None:
        parts.append(f'after:{int(since.timestamp())}')
    if extra:
        parts.append(extra)
    return ' '.join(parts)


def parse_email_headers(message_data):
    """Extract key headers from Gmail message"""
    headers = {}
    payload = message_data.get('payload', {})
    for header in payload.get('headers', []):
        name = header.get('name', '').lower()
        if name in ['from', 'to', 'subject', 'date', 'message-id']:
            headers[name] = header.get('value', '')
    return headers


def _decode_payload(data):
    # Gmail returns base64url-encoded data, sometimes without padding
    missing_padding = len(data) % 4
    if missing_padding:
        data += '=' * (4 - missing_padding)
    return base64.urlsafe_b64decode(data).decode('utf-8', errors='replace')


def extract_email_body(message_data):
    """Plain text body of a Gmail message; HTML parts are stripped as a fallback."""
    payload = message_data.get('payload', {})
    plain, html = [], []

    def traverse(part):
        mime = part.get('mimeType', '')
        data = part.get('body', {}).get('data')
        if data and mime == 'text/plain':
            plain.append(_decode_payload(data))
        elif data and mime == 'text/html':
            html.append(re.sub(r'<[^<]+?>', ' ', _decode_payload(data)))
        for child in part.get('parts', []):
            traverse(child)

    traverse(payload)
    if plain:
        return _clean_text('\n'.join(plain))
    if html:
        return _clean_text('\n'.join(html))
    data = payload.get('body', {}).get('data')
    return _clean_text(_decode_payload(data)) if data else ''


def _clean_text(s):
    s = re.sub(r'[\u200b-\u200d\ufeff]', '', s or '')
    s = re.sub(r'[ \t]+', ' ', s)
    s = re.sub(r'\s+\n', '\n', s)
    return s.strip()


def parse_gmail_date(date_str):
    """Parse an RFC 2822 Date header; None when it is missing or unreadable."""
    if not date_str:
        return None
    try:
        dt = parsedate_to_datetime(date_str)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse date '{date_str}': {e}")
        return None
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, dt_timezone.utc)
    return dt


def gmail_received_at(message_data, headers):
    """Arrival time of a Gmail message.

    ``internalDate`` is what Gmail's ``after:`` search filters on, so it is the
    only value safe to build the watermark from; the sender-controlled Date
    header is used only when Gmail omits it.
    """
    internal_date_ms = message_data.get('internalDate')
    if internal_date_ms:
        try:
            return datetime.fromtimestamp(int(internal_date_ms) / 1000, tz=dt_timezone.utc)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Bad internalDate '{internal_date_ms}' on message {message_data.get('id')}")
    received_at = parse_gmail_date(headers.get('date'))
    if received_at is None:
        raise MalformedMessage(f"Message {message_data.get('id')} has no usable date")
    return received_at


def parse_gmail_message(message_data):
    headers = parse_email_headers(message_data)
    return RawMessage(
        message_id=message_data.get('id') or headers.get('message-id') or None,
        subject=headers.get('subject', ''),
        from_address=headers.get('from', ''),
        received_at=gmail_received_at(message_data, headers),
        body_text=extract_email_body(message_data),
    )

"""
Tests for the Gmail mailbox client
"""
import base64
from datetime import datetime, timezone as dt_timezone
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from jobmail import monitor
from jobmail.exceptions import MailboxUnavailable
from jobmail.mailbox import (
    GmailMailboxClient,
    MalformedMessage,
    build_query,
    extract_email_body,
    get_mailbox_client,
    parse_gmail_date,
    parse_gmail_message,
    settings_token_provider,
)
from jobmail.models import MonitoringState
from jobmail.tests.fixtures import FakeMailboxClient, UserFactory


def _b64(text):
    return base64.urlsafe_b64encode(text.encode('utf-8')).decode('ascii').rstrip('=')


def _gmail_message(msg_id='m1', subject='Interview invitation', body='Hello there', mime='text/plain',
                   date='Mon, 2 Mar 2026 15:30:00 +0000', internal_date='1772465400000'):
    message = {
        'id': msg_id,
        'internalDate': internal_date,
        'payload': {
            'mimeType': 'multipart/alternative',
            'headers': [
                {'name': 'Subject', 'value': subject},
                {'name': 'From', 'value': 'Acme Talent <jobs@acme.com>'},
                {'name': 'Date', 'value': date},
            ],
            'parts': [{'mimeType': mime, 'body': {'data': _b64(body)}}],
        },
    }
    if internal_date is None:
        del message['internalDate']
    return message


def _response(status_code=200, json_data=None, headers=None, text=''):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = json_data or {}
    resp.headers = headers or {}
    resp.content = b'{}' if json_data else b''
    resp.text = text
    return resp


class TestParsing:
    def test_parse_message(self):
        raw = parse_gmail_message(_gmail_message(body='We would like to meet.'))

        assert raw.message_id == 'm1'
        assert raw.subject == 'Interview invitation'
        assert raw.from_address == 'Acme Talent <jobs@acme.com>'
        assert raw.received_at == datetime(2026, 3, 2, 15, 30, tzinfo=dt_timezone.utc)
        assert raw.body_text == 'We would like to meet.'

    def test_html_body_stripped(self):
        body = extract_email_body(_gmail_message(body='<p>Hello <b>you</b></p>', mime='text/html'))
        assert body == 'Hello you'

    def test_plain_preferred_over_html(self):
        message = _gmail_message(body='plain text')
        message['payload']['parts'].append({'mimeType': 'text/html', 'body': {'data': _b64('<p>html</p>')}})
        assert extract_email_body(message) == 'plain text'

    def test_received_at_is_arrival_time_not_date_header(self):
        raw = parse_gmail_message(_gmail_message(date='Fri, 1 Jan 2027 00:00:00 +0000'))
        assert raw.received_at == datetime(2026, 3, 2, 15, 30, tzinfo=dt_timezone.utc)

    def test_date_header_used_without_internal_date(self):
        raw = parse_gmail_message(_gmail_message(date='Tue, 3 Mar 2026 09:00:00 +0000', internal_date=None))
        assert raw.received_at == datetime(2026, 3, 3, 9, 0, tzinfo=dt_timezone.utc)

    def test_message_without_usable_date_is_malformed(self):
        with pytest.raises(MalformedMessage):
            parse_gmail_message(_gmail_message(date='not a date', internal_date=None))

    def test_unreadable_date_header(self):
        assert parse_gmail_date('not a date') is None
        assert parse_gmail_date('') is None

    def test_build_query(self):
        since = datetime(2026, 3, 2, 15, 30, tzinfo=dt_timezone.utc)
        assert build_query(since, 'category:primary') == 'after:1772465400 category:primary'
        assert build_query(None) == ''


class TestGmailMailboxClient:
    def _client(self, responses):
        session = MagicMock()
        session.get.side_effect = responses
        return GmailMailboxClient(token_provider=lambda user: 'token', session=session), session

    def test_fetch_paginates_and_parses(self):
        client, session = self._client([
            _response(json_data={'messages': [{'id': 'm1'}], 'nextPageToken': 'p2'}),
            _response(json_data=_gmail_message('m1')),
            _response(json_data={'messages': [{'id': 'm2'}]}),
            _response(json_data=_gmail_message('m2')),
        ])
        since = datetime(2026, 3, 1, tzinfo=dt_timezone.utc)

        messages = list(client.fetch(user=None, since=since))

        assert [m.message_id for m in messages] == ['m1', 'm2']
        first_params = session.get.call_args_list[0].kwargs['params']
        assert first_params['q'].startswith('after:')
        assert session.get.call_args_list[2].kwargs['params']['pageToken'] == 'p2'
        assert session.get.call_args_list[0].kwargs['headers']['Authorization'] == 'Bearer token'

    def test_malformed_message_skipped(self):
        client, _ = self._client([
            _response(json_data={'messages': [{'id': 'bad'}, {'id': 'm2'}]}),
            _response(json_data=_gmail_message('bad', date='', internal_date=None)),
            _response(json_data=_gmail_message('m2')),
        ])

        assert [m.message_id for m in client.fetch(user=None)] == ['m2']

    @pytest.mark.django_db
    def test_future_date_header_does_not_advance_watermark(self):
        user = UserFactory()
        client, _ = self._client([
            _response(json_data={'messages': [{'id': 'm1'}]}),
            _response(json_data=_gmail_message('m1', date='Fri, 1 Jan 2027 00:00:00 +0000')),
        ])

        summary = monitor.check_now(user, client=client)

        arrival = datetime(2026, 3, 2, 15, 30, tzinfo=dt_timezone.utc)
        assert summary.watermark == arrival
        assert MonitoringState.objects.get(user=user).watermark == arrival

    def test_auth_failure_is_unavailable(self):
        client, _ = self._client([_response(status_code=401)])
        with pytest.raises(MailboxUnavailable):
            list(client.fetch(user=None))

    @patch('jobmail.mailbox.time.sleep')
    def test_server_error_retried(self, mock_sleep):
        client, session = self._client([
            _response(status_code=503),
            _response(json_data={'messages': []}),
        ])

        assert list(client.fetch(user=None)) == []
        assert session.get.call_count == 2
        mock_sleep.assert_called_once()

    @patch('jobmail.mailbox.time.sleep')
    def test_rate_limit_exhausted(self, mock_sleep):
        client, _ = self._client([_response(status_code=429, headers={'Retry-After': '1'})] * 3)

        with pytest.raises(MailboxUnavailable) as exc_info:
            list(client.fetch(user=None))

        assert exc_info.value.retry_after == 1

    @patch('jobmail.mailbox.time.sleep')
    def test_network_error_is_unavailable(self, mock_sleep):
        client, _ = self._client(requests.exceptions.ConnectionError('refused'))
        with pytest.raises(MailboxUnavailable):
            list(client.fetch(user=None))

    def test_elapsed_timeout_is_unavailable(self):
        client, session = self._client([_response(json_data={'messages': []})])
        with patch('jobmail.mailbox.time.monotonic', side_effect=[100.0, 200.0]):
            with pytest.raises(MailboxUnavailable):
                list(client.fetch(user=None, timeout=30))
        session.get.assert_not_called()


class TestConfiguration:
    def test_token_provider_requires_token(self, settings):
        settings.JOBMAIL = {'GMAIL_ACCESS_TOKEN': ''}
        with pytest.raises(MailboxUnavailable):
            settings_token_provider(user=None)

    def test_token_provider_returns_configured_token(self, settings):
        settings.JOBMAIL = {'GMAIL_ACCESS_TOKEN': 'abc'}
        assert settings_token_provider(user=None) == 'abc'

    def test_client_class_is_configurable(self, settings):
        settings.JOBMAIL = {'MAILBOX_CLIENT': 'jobmail.tests.fixtures.FakeMailboxClient'}
        assert isinstance(get_mailbox_client(), FakeMailboxClient)

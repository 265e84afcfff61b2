"""
Test fixtures and factories for creating test data.
Uses factory_boy for consistent test data generation.
"""
from datetime import datetime, timezone as dt_timezone

import factory
from factory.django import DjangoModelFactory
from django.contrib.auth import get_user_model

from jobmail.dedup import build_dedup_key
from jobmail.exceptions import MailboxUnavailable
from jobmail.mailbox import MailboxClient, RawMessage
from jobmail.models import EmailEvent, Job, MonitoringState

User = get_user_model()

RECEIVED = datetime(2026, 3, 2, 15, 30, tzinfo=dt_timezone.utc)


class UserFactory(DjangoModelFactory):
    """Factory for creating test users"""
    class Meta:
        model = User

    username = factory.Sequence(lambda n: f'user{n}')
    email = factory.Sequence(lambda n: f'user{n}@example.com')
    is_active = True


class JobFactory(DjangoModelFactory):
    """Factory for tracked jobs"""
    class Meta:
        model = Job

    user = factory.SubFactory(UserFactory)
    company_name = 'Acme'
    job_title = 'Software Engineer'
    application_status = Job.STATUS_APPLIED
    job_url = factory.Sequence(lambda n: f'https://careers.example.com/jobs/{n}')


class MonitoringStateFactory(DjangoModelFactory):
    class Meta:
        model = MonitoringState

    user = factory.SubFactory(UserFactory)
    interval_minutes = 5


class EmailEventFactory(DjangoModelFactory):
    """Factory for recorded email events"""
    class Meta:
        model = EmailEvent

    user = factory.SubFactory(UserFactory)
    message_id = factory.Sequence(lambda n: f'msg-{n}')
    subject = factory.Sequence(lambda n: f'Update {n}')
    from_address = 'jobs@acme.com'
    received_at = RECEIVED
    processed_at = RECEIVED
    email_type = EmailEvent.TYPE_OTHER
    confidence = 0
    metadata = factory.LazyFunction(dict)
    dedup_key = factory.LazyAttribute(lambda o: build_dedup_key(o.subject, o.from_address, o.received_at))


def make_raw(message_id='msg-1', subject='Hello', from_address='Acme Talent <jobs@acme.com>',
             body='', received_at=RECEIVED):
    return RawMessage(
        message_id=message_id,
        subject=subject,
        from_address=from_address,
        received_at=received_at,
        body_text=body,
    )


class FakeMailboxClient(MailboxClient):
    """In-memory mailbox; returns every message received at or after ``since``."""

    def __init__(self, messages=None, error=None):
        self.messages = list(messages or [])
        self.error = error
        self.calls = []

    def fetch(self, user, since=None, timeout=None):
        self.calls.append({'user': user, 'since': since, 'timeout': timeout})
        if self.error:
            raise self.error
        for raw in self.messages:
            if since is None or raw.received_at >= since:
                yield raw


class UnavailableMailboxClient(FakeMailboxClient):
    def __init__(self):
        super().__init__(error=MailboxUnavailable('Authentication failed. Please reconnect your Gmail account.'))

"""
Tests for the jobmail management commands
"""
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from jobmail.models import EmailEvent
from jobmail.tests.fixtures import (
    RECEIVED,
    EmailEventFactory,
    FakeMailboxClient,
    UnavailableMailboxClient,
    UserFactory,
    make_raw,
)


@pytest.fixture
def user(db):
    return UserFactory(username='testuser')


@pytest.mark.django_db
class TestCheckEmail:
    def test_prints_summary(self, user):
        out = StringIO()
        with patch('jobmail.monitor.get_mailbox_client', return_value=FakeMailboxClient([make_raw()])):
            call_command('check_email', user='testuser', stdout=out)

        assert '"processed_count": 1' in out.getvalue()
        assert EmailEvent.objects.filter(user=user).count() == 1

    def test_unknown_user(self, db):
        with pytest.raises(CommandError):
            call_command('check_email', user='nobody', stdout=StringIO())

    def test_mailbox_failure_is_command_error(self, user):
        with patch('jobmail.monitor.get_mailbox_client', return_value=UnavailableMailboxClient()):
            with pytest.raises(CommandError, match='mailbox_unavailable'):
                call_command('check_email', user='testuser', stdout=StringIO())


@pytest.mark.django_db
class TestCleanupDuplicateEmails:
    def _duplicates(self, user):
        first = EmailEventFactory(user=user, message_id='a', subject='Hello', processed_at=RECEIVED)
        second = EmailEventFactory(user=user, message_id='b', subject='Hello',
                                   processed_at=RECEIVED + timedelta(minutes=5))
        unrelated = EmailEventFactory(user=user, message_id='c', subject='Other')
        return first, second, unrelated

    def test_keeps_earliest(self, user):
        first, second, unrelated = self._duplicates(user)
        out = StringIO()

        call_command('cleanup_duplicate_emails', stdout=out)

        remaining = set(EmailEvent.objects.values_list('pk', flat=True))
        assert remaining == {first.pk, unrelated.pk}
        assert 'Deleted 1 duplicate' in out.getvalue()

    def test_dry_run_deletes_nothing(self, user):
        self._duplicates(user)
        out = StringIO()

        call_command('cleanup_duplicate_emails', '--dry-run', stdout=out)

        assert EmailEvent.objects.count() == 3
        assert 'Found 1 duplicate' in out.getvalue()

    def test_same_key_for_different_users_kept(self, user):
        EmailEventFactory(user=user, message_id='a', subject='Hello')
        EmailEventFactory(message_id='b', subject='Hello')

        call_command('cleanup_duplicate_emails', stdout=StringIO())

        assert EmailEvent.objects.count() == 2

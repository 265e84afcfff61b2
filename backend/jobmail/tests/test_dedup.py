"""
Tests for duplicate detection
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from jobmail.dedup import build_dedup_key, day_bucket, is_duplicate, normalize_address
from jobmail.tests.fixtures import RECEIVED, EmailEventFactory, UserFactory, make_raw


@pytest.fixture
def user(db):
    return UserFactory()


class TestDedupKey:
    def test_key_is_normalized(self):
        key = build_dedup_key('  Your   Application ', 'Acme Talent <Jobs@Acme.com>', RECEIVED)
        assert key == 'your application|jobs@acme.com|2026-03-02'

    def test_day_bucket_is_utc(self):
        eastern = dt_timezone(timedelta(hours=-5))
        assert day_bucket(datetime(2026, 3, 2, 23, 30, tzinfo=eastern)) == '2026-03-03'

    def test_bare_address_kept(self):
        assert normalize_address('jobs@acme.com') == 'jobs@acme.com'


@pytest.mark.django_db
class TestIsDuplicate:
    def test_same_message_id_is_duplicate(self, user):
        EmailEventFactory(user=user, message_id='abc')
        assert is_duplicate(user, make_raw(message_id='abc', subject='Something else'))

    def test_message_id_scoped_to_user(self, user):
        EmailEventFactory(message_id='abc')
        assert not is_duplicate(user, make_raw(message_id='abc'))

    def test_message_id_is_authoritative(self, user):
        # Same subject/sender/day but a different message id is a new message
        EmailEventFactory(user=user, message_id='first', subject='Hello', from_address='jobs@acme.com')
        assert not is_duplicate(user, make_raw(message_id='second', subject='Hello', from_address='jobs@acme.com'))

    def test_fallback_key_same_day(self, user):
        EmailEventFactory(user=user, message_id=None, subject='Hello', from_address='jobs@acme.com')
        raw = make_raw(message_id=None, subject='hello ', from_address='Acme <JOBS@acme.com>',
                       received_at=RECEIVED + timedelta(hours=3))
        assert is_duplicate(user, raw)

    def test_fallback_key_other_day(self, user):
        EmailEventFactory(user=user, message_id=None, subject='Hello', from_address='jobs@acme.com')
        raw = make_raw(message_id=None, subject='Hello', from_address='jobs@acme.com',
                       received_at=RECEIVED + timedelta(days=1))
        assert not is_duplicate(user, raw)

    def test_fallback_window(self, user, settings):
        settings.JOBMAIL = {'DEDUP_WINDOW_DAYS': 1}
        EmailEventFactory(user=user, message_id=None, subject='Hello', from_address='jobs@acme.com')
        raw = make_raw(message_id=None, subject='Hello', from_address='jobs@acme.com',
                       received_at=RECEIVED + timedelta(days=1))
        assert is_duplicate(user, raw)

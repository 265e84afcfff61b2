"""
Tests for linking messages to tracked jobs
"""
from datetime import date

import pytest

from jobmail.classifier import Classification
from jobmail.matcher import MATCHED_BY_COMPANY, MATCHED_BY_URL, NO_MATCH, match
from jobmail.models import EmailEvent, Job
from jobmail.tests.fixtures import JobFactory, UserFactory, make_raw


@pytest.fixture
def user(db):
    return UserFactory()


def _classification(**metadata):
    return Classification(email_type=EmailEvent.TYPE_OTHER, confidence=0, metadata=metadata)


@pytest.mark.django_db
class TestMatchByUrl:
    def test_url_in_body_matches_case_insensitively(self, user):
        job = JobFactory(user=user, company_name='Globex', job_url='https://boards.greenhouse.io/acme/jobs/123/')
        raw = make_raw(from_address='x@gmail.com', body='Re: HTTPS://boards.greenhouse.io/acme/jobs/123 thanks')

        result = match(user, raw, _classification())

        assert result.job_id == job.pk
        assert result.matched_by == MATCHED_BY_URL

    def test_longest_url_wins(self, user):
        JobFactory(user=user, job_url='https://acme.com/jobs/1')
        longer = JobFactory(user=user, job_url='https://acme.com/jobs/12')
        raw = make_raw(from_address='x@gmail.com', body='see https://acme.com/jobs/12')

        assert match(user, raw, _classification()).job_id == longer.pk

    def test_url_matches_terminal_job(self, user):
        job = JobFactory(user=user, job_url='https://acme.com/jobs/7', application_status=Job.STATUS_OFFER)
        raw = make_raw(from_address='x@gmail.com', body='https://acme.com/jobs/7')

        assert match(user, raw, _classification()).job_id == job.pk


@pytest.mark.django_db
class TestMatchByCompany:
    def test_most_recent_non_terminal_job_wins(self, user):
        JobFactory(user=user, company_name='Acme', applied_date=date(2026, 1, 1))
        newest_open = JobFactory(user=user, company_name='Acme Inc.', applied_date=date(2026, 2, 1))
        JobFactory(user=user, company_name='ACME', applied_date=date(2026, 2, 20), application_status=Job.STATUS_REJECTED)

        result = match(user, make_raw(from_address='x@gmail.com'), _classification(inferred_company='ACME'))

        assert result.job_id == newest_open.pk
        assert result.matched_by == MATCHED_BY_COMPANY

    def test_missing_applied_date_sorts_last(self, user):
        JobFactory(user=user, company_name='Acme', applied_date=None)
        dated = JobFactory(user=user, company_name='Acme', applied_date=date(2025, 12, 1))

        assert match(user, make_raw(), _classification(inferred_company='Acme')).job_id == dated.pk

    def test_sender_domain_used_without_inferred_company(self, user):
        job = JobFactory(user=user, company_name='Acme')
        assert match(user, make_raw(from_address='hr@acme.com'), _classification()).job_id == job.pk

    def test_other_users_jobs_ignored(self, user):
        JobFactory(company_name='Acme')
        assert match(user, make_raw(from_address='hr@acme.com'), _classification()) == NO_MATCH

    def test_no_match(self, user):
        JobFactory(user=user, company_name='Acme')
        result = match(user, make_raw(from_address='someone@gmail.com', subject='Hi'), _classification())

        assert not result
        assert result.job_id is None

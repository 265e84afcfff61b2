"""
Tests for the Celery scheduling tasks
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from celery.exceptions import Retry
from django.utils import timezone

from jobmail import monitor
from jobmail.models import EmailEvent, MonitoringState
from jobmail.tasks import dispatch_due_monitors, run_monitor_cycle
from jobmail.tests.fixtures import FakeMailboxClient, MonitoringStateFactory, UserFactory, make_raw


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.mark.django_db
class TestDispatchDueMonitors:
    @patch('jobmail.tasks.run_monitor_cycle.delay')
    def test_only_due_states_dispatched(self, mock_delay):
        now = timezone.now()
        due = MonitoringStateFactory(active=True, next_check_at=now - timedelta(minutes=1), interval_minutes=10)
        MonitoringStateFactory(active=True, next_check_at=now + timedelta(minutes=5))
        MonitoringStateFactory(active=False, next_check_at=now - timedelta(minutes=1))
        MonitoringStateFactory(active=True, running=True, run_started_at=now, next_check_at=now - timedelta(minutes=1))

        dispatched = dispatch_due_monitors()

        assert dispatched == 1
        mock_delay.assert_called_once_with(due.user_id)
        due.refresh_from_db()
        assert due.next_check_at > now + timedelta(minutes=9)

    @patch('jobmail.tasks.run_monitor_cycle.delay')
    def test_not_dispatched_twice(self, mock_delay):
        MonitoringStateFactory(active=True, next_check_at=timezone.now() - timedelta(seconds=1))

        dispatch_due_monitors()
        dispatch_due_monitors()

        assert mock_delay.call_count == 1

    @patch('jobmail.tasks.run_monitor_cycle.delay')
    def test_stale_run_flag_dispatched(self, mock_delay):
        now = timezone.now()
        stuck = MonitoringStateFactory(
            active=True, running=True, run_started_at=now - timedelta(hours=5), next_check_at=now - timedelta(hours=4)
        )

        assert dispatch_due_monitors() == 1
        mock_delay.assert_called_once_with(stuck.user_id)


@pytest.mark.django_db
class TestRunMonitorCycle:
    def test_takes_over_stale_run_flag(self, user):
        monitor.start_monitoring(user, 5)
        MonitoringState.objects.filter(user=user).update(
            running=True, run_started_at=timezone.now() - timedelta(hours=5)
        )

        with patch('jobmail.monitor.get_mailbox_client', return_value=FakeMailboxClient([make_raw()])):
            result = run_monitor_cycle(user.pk)

        assert result['processed_count'] == 1
        assert MonitoringState.objects.get(user=user).running is False

    def test_runs_cycle_for_active_user(self, user):
        monitor.start_monitoring(user, 5)
        raw = make_raw(subject='Thank you for applying', body='We have received your application.')

        with patch('jobmail.monitor.get_mailbox_client', return_value=FakeMailboxClient([raw])):
            result = run_monitor_cycle(user.pk)

        assert result['processed_count'] == 1
        assert result['error'] is None
        assert EmailEvent.objects.filter(user=user).count() == 1

    def test_inactive_user_skipped(self, user):
        client = FakeMailboxClient([make_raw()])
        with patch('jobmail.monitor.get_mailbox_client', return_value=client):
            assert run_monitor_cycle(user.pk) is None

        assert client.calls == []

    def test_missing_user_skipped(self, db):
        assert run_monitor_cycle(987654) is None

    def test_already_running_not_retried(self, user):
        monitor.start_monitoring(user, 5)
        MonitoringState.objects.filter(user=user).update(running=True, run_started_at=timezone.now())

        with patch.object(run_monitor_cycle, 'retry') as mock_retry:
            assert run_monitor_cycle(user.pk) is None

        mock_retry.assert_not_called()

    def test_unexpected_error_retried(self, user):
        monitor.start_monitoring(user, 5)

        with patch('jobmail.monitor.run_cycle', side_effect=RuntimeError('db gone')), \
                patch.object(run_monitor_cycle, 'retry', side_effect=Retry()) as mock_retry:
            with pytest.raises(Retry):
                run_monitor_cycle(user.pk)

        assert mock_retry.call_args.kwargs['countdown'] == 60

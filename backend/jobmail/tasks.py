"""
Celery tasks driving scheduled mailbox checks.

Beat runs ``dispatch_due_monitors`` every minute; it claims every active
state whose ``next_check_at`` has passed and enqueues one
``run_monitor_cycle`` per user.
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.contrib.auth import get_user_model
from django.db.models import Q
from django.utils import timezone

from jobmail.conf import get_setting
from jobmail.exceptions import AlreadyRunning
from jobmail.models import MonitorCycleLog, MonitoringState
from jobmail import monitor

logger = logging.getLogger(__name__)


@shared_task
def dispatch_due_monitors():
    """Enqueue a cycle for every user whose next check is due."""
    now = timezone.now()
    stale_cutoff = now - timedelta(seconds=get_setting('RUN_LOCK_STALE_SECONDS'))
    due = MonitoringState.objects.filter(
        active=True, next_check_at__isnull=False, next_check_at__lte=now
    ).filter(
        # A flag left behind by a dead worker is taken over by run_cycle
        Q(running=False) | Q(run_started_at__isnull=True) | Q(run_started_at__lt=stale_cutoff)
    ).values_list('pk', 'user_id', 'interval_minutes')

    dispatched = 0
    for state_id, user_id, interval in due:
        # Claim the slot so a slow queue does not get the same user twice
        claimed = MonitoringState.objects.filter(pk=state_id, next_check_at__lte=now).update(
            next_check_at=now + timedelta(minutes=interval)
        )
        if claimed:
            run_monitor_cycle.delay(user_id)
            dispatched += 1

    if dispatched:
        logger.info(f'Dispatched {dispatched} mailbox check(s)')
    return dispatched


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def run_monitor_cycle(self, user_id):
    """Run one scheduled cycle; mailbox outages are left for the next tick."""
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        logger.warning(f'Skipping mailbox check for missing user {user_id}')
        return None

    state = monitor.get_monitoring_status(user)
    if not state.active:
        logger.info(f'Monitoring inactive for user {user_id}; skipping scheduled check')
        return None

    try:
        summary = monitor.run_cycle(user, trigger=MonitorCycleLog.TRIGGER_SCHEDULED)
    except AlreadyRunning:
        # Not queued: the next tick picks the user up again
        logger.info(f'Mailbox check already running for user {user_id}; not retrying')
        return None
    except Exception as exc:
        logger.error(f'Mailbox check task failed for user {user_id}, will retry: {exc}')
        retry_countdown = 60 * (2 ** self.request.retries)  # 60s, 120s, 240s
        raise self.retry(exc=exc, countdown=retry_countdown)

    return summary.to_dict()

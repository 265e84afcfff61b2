"""
Mailbox monitoring: per-user state, the check cycle and the operations exposed
to the REST layer, the Celery tasks and the management commands.

One cycle = acquire the user's run flag, fetch everything newer than the
watermark, then dedup -> classify -> match -> reconcile each message inside a
single transaction. The watermark only moves after that transaction commits.
"""
import logging
import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import Avg, Count, F, Q
from django.utils import timezone

from jobmail.classifier import Classification, classify, sender_domain
from jobmail.conf import get_setting
from jobmail.dedup import is_duplicate
from jobmail.exceptions import (
    AlreadyActive,
    AlreadyRunning,
    EmailEventNotFound,
    InvalidMonitoringRequest,
    MailboxUnavailable,
    PersistenceFailure,
)
from jobmail.mailbox import get_mailbox_client
from jobmail.matcher import NO_MATCH, match
from jobmail.models import EmailEvent, MonitorCycleLog, MonitoringState
from jobmail.reconciler import reconcile

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass
class CycleSummary:
    fetched_count: int = 0
    processed_count: int = 0
    duplicate_count: int = 0
    matched_count: int = 0
    failed_count: int = 0
    status_updates: List[dict] = field(default_factory=list)
    watermark: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self):
        return self.error is None

    def discard_results(self):
        """Forget per-message results after the cycle's transaction rolled back."""
        self.processed_count = self.duplicate_count = self.matched_count = self.failed_count = 0
        self.status_updates = []

    def to_dict(self):
        data = asdict(self)
        data['watermark'] = self.watermark.isoformat() if self.watermark else None
        return data


# ---------------------------------------------------------------------------
# State and run flag
# ---------------------------------------------------------------------------

def get_monitoring_status(user):
    state, _ = MonitoringState.objects.get_or_create(
        user=user,
        defaults={'interval_minutes': get_setting('DEFAULT_INTERVAL_MINUTES')},
    )
    return state


def acquire_run_lock(state):
    """Set ``running`` with a single conditional UPDATE; False if a live cycle holds it.

    A flag older than RUN_LOCK_STALE_SECONDS is assumed to belong to a worker
    that died mid-cycle and is taken over.
    """
    now = timezone.now()
    stale_cutoff = now - timedelta(seconds=get_setting('RUN_LOCK_STALE_SECONDS'))
    acquired = MonitoringState.objects.filter(pk=state.pk).filter(
        Q(running=False) | Q(run_started_at__isnull=True) | Q(run_started_at__lt=stale_cutoff)
    ).update(running=True, run_started_at=now)
    if acquired:
        state.running = True
        state.run_started_at = now
    return bool(acquired)


def release_run_lock(state):
    MonitoringState.objects.filter(pk=state.pk).update(running=False, run_started_at=None)
    state.running = False
    state.run_started_at = None


def _validate_interval(interval_minutes):
    low, high = get_setting('MIN_INTERVAL_MINUTES'), get_setting('MAX_INTERVAL_MINUTES')
    try:
        interval = int(interval_minutes)
    except (TypeError, ValueError):
        raise InvalidMonitoringRequest('interval_minutes must be an integer')
    if isinstance(interval_minutes, float) and interval != interval_minutes:
        raise InvalidMonitoringRequest('interval_minutes must be an integer')
    if not low <= interval <= high:
        raise InvalidMonitoringRequest(f'interval_minutes must be between {low} and {high}')
    return interval


# ---------------------------------------------------------------------------
# Exposed operations
# ---------------------------------------------------------------------------

def start_monitoring(user, interval_minutes=None):
    """Activate periodic checks; the first one is due immediately."""
    if interval_minutes is None:
        interval_minutes = get_setting('DEFAULT_INTERVAL_MINUTES')
    interval = _validate_interval(interval_minutes)

    state = get_monitoring_status(user)
    with transaction.atomic():
        state = MonitoringState.objects.select_for_update().get(pk=state.pk)
        if state.active:
            raise AlreadyActive()
        state.active = True
        state.interval_minutes = interval
        state.next_check_at = timezone.now()
        state.save(update_fields=['active', 'interval_minutes', 'next_check_at', 'updated_at'])

    logger.info(f'Email monitoring started for user {user.pk} every {interval} minute(s)')
    return state


def stop_monitoring(user):
    """Deactivate periodic checks. A cycle already in flight runs to completion."""
    state = get_monitoring_status(user)
    MonitoringState.objects.filter(pk=state.pk).update(active=False, next_check_at=None, updated_at=timezone.now())
    state.refresh_from_db()
    logger.info(f'Email monitoring stopped for user {user.pk}')
    return state


def check_now(user, client=None):
    """Run one cycle immediately, whether or not monitoring is active."""
    return run_cycle(user, trigger=MonitorCycleLog.TRIGGER_MANUAL, client=client)


def list_email_events(user, filters=None):
    """Return ``(events, total)`` for the user's events matching ``filters``.

    Supported filters: email_type, job_id, matched, status_updated,
    date_from, date_to, search, limit, offset.
    """
    filters = filters or {}
    qs = EmailEvent.objects.filter(user=user).select_related('job')

    email_type = filters.get('email_type')
    if email_type:
        if email_type not in dict(EmailEvent.EMAIL_TYPE_CHOICES):
            raise InvalidMonitoringRequest(f'Unknown email_type: {email_type}')
        qs = qs.filter(email_type=email_type)
    if filters.get('job_id') is not None:
        qs = qs.filter(job_id=filters['job_id'])
    if filters.get('matched') is not None:
        qs = qs.filter(job__isnull=not filters['matched'])
    if filters.get('status_updated') is not None:
        if filters['status_updated']:
            qs = qs.filter(metadata__job_status_updated=True)
        else:
            qs = qs.exclude(metadata__job_status_updated=True)
    if filters.get('date_from'):
        qs = qs.filter(received_at__gte=filters['date_from'])
    if filters.get('date_to'):
        qs = qs.filter(received_at__lte=filters['date_to'])
    if filters.get('search'):
        term = filters['search']
        qs = qs.filter(Q(subject__icontains=term) | Q(from_address__icontains=term))

    limit = filters.get('limit') or DEFAULT_PAGE_SIZE
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(filters.get('offset') or 0))

    total = qs.count()
    return list(qs.order_by('-received_at', '-processed_at')[offset:offset + limit]), total


def delete_email_event(user, event_id):
    try:
        deleted, _ = EmailEvent.objects.filter(user=user, pk=event_id).delete()
    except (ValueError, ValidationError):
        raise EmailEventNotFound()
    if not deleted:
        raise EmailEventNotFound()
    logger.info(f'Email event {event_id} deleted by user {user.pk}')


def bulk_delete_email_events(user, event_ids):
    """Delete the user's events among ``event_ids``; returns how many were removed."""
    valid_ids = []
    for event_id in event_ids or []:
        try:
            valid_ids.append(uuid.UUID(str(event_id)))
        except ValueError:
            logger.debug(f'Ignoring malformed email event id {event_id!r}')
    if not valid_ids:
        return 0

    _, per_model = EmailEvent.objects.filter(user=user, pk__in=valid_ids).delete()
    deleted = per_model.get(EmailEvent._meta.label, 0)
    logger.info(f'Bulk deleted {deleted} email event(s) for user {user.pk}')
    return deleted


def email_event_stats(user, days=30):
    """Counts by type, match and update rates and top sender domains over ``days``."""
    since = timezone.now() - timedelta(days=days)
    qs = EmailEvent.objects.filter(user=user, received_at__gte=since)

    by_type = {email_type: 0 for email_type, _ in EmailEvent.EMAIL_TYPE_CHOICES}
    for row in qs.values('email_type').annotate(count=Count('id')):
        by_type[row['email_type']] = row['count']

    total = sum(by_type.values())
    avg_confidence = qs.aggregate(avg=Avg('confidence'))['avg']
    domains = Counter(
        domain for domain in (sender_domain(addr) for addr in qs.values_list('from_address', flat=True)) if domain
    )
    return {
        'days': days,
        'total': total,
        'by_type': by_type,
        'matched': qs.filter(job__isnull=False).count(),
        'status_updates': qs.filter(metadata__job_status_updated=True).count(),
        'average_confidence': round(avg_confidence, 1) if avg_confidence is not None else None,
        'top_sender_domains': [{'domain': d, 'count': c} for d, c in domains.most_common(5)],
    }


# ---------------------------------------------------------------------------
# The cycle
# ---------------------------------------------------------------------------

def run_cycle(user, trigger=MonitorCycleLog.TRIGGER_SCHEDULED, client=None):
    """Run one check cycle for ``user``.

    Raises ``AlreadyRunning`` when another cycle holds the run flag. Mailbox and
    persistence failures are recorded on the state and returned in the summary
    with ``error`` set; nothing is applied in that case.
    """
    state = get_monitoring_status(user)
    if not acquire_run_lock(state):
        logger.info(f'Mailbox check already running for user {user.pk}; skipping {trigger} run')
        raise AlreadyRunning()

    try:
        # Watermark may have moved while the flag was held elsewhere
        state.refresh_from_db()
        if trigger == MonitorCycleLog.TRIGGER_SCHEDULED:
            MonitoringState.objects.filter(pk=state.pk, active=True).update(
                next_check_at=timezone.now() + timedelta(minutes=state.interval_minutes)
            )
        cycle_log = MonitorCycleLog.objects.create(state=state, trigger=trigger)
        return _run_locked(user, state, cycle_log, client)
    finally:
        release_run_lock(state)


def _run_locked(user, state, cycle_log, client):
    summary = CycleSummary(watermark=state.watermark)
    timeout = get_setting('FETCH_TIMEOUT_SECONDS') or state.interval_minutes * 60
    logger.info(f'Mailbox check started for user {user.pk} ({cycle_log.trigger}, since {state.watermark})')

    try:
        client = client or get_mailbox_client()
        messages = list(client.fetch(user, since=state.watermark, timeout=timeout))
        summary.fetched_count = len(messages)
        # Oldest first so a confirmation lands before the interview invite that follows it
        messages.sort(key=lambda m: (m.received_at, m.message_id or ''))

        latest = None
        with transaction.atomic():
            for raw in messages:
                _process_message(user, raw, summary)
                if latest is None or raw.received_at > latest:
                    latest = raw.received_at

        now = timezone.now()
        if latest is not None and (state.watermark is None or latest > state.watermark):
            summary.watermark = latest
        MonitoringState.objects.filter(pk=state.pk).update(
            watermark=summary.watermark,
            last_checked_at=now,
            last_error='',
            last_error_at=None,
            consecutive_failures=0,
            updated_at=now,
        )
        _finish_log(cycle_log, summary, MonitorCycleLog.STATUS_SUCCESS)
        logger.info(
            f'Mailbox check finished for user {user.pk}: {summary.fetched_count} fetched, '
            f'{summary.processed_count} recorded, {summary.duplicate_count} duplicates, '
            f'{summary.matched_count} matched, {len(summary.status_updates)} status updates'
        )
        return summary

    except (MailboxUnavailable, PersistenceFailure) as e:
        logger.warning(f'Mailbox check failed for user {user.pk}: {e.code}: {e.message}')
        summary.discard_results()
        summary.watermark = state.watermark
        summary.error = e.message
        summary.error_code = e.code
        _record_failure(state, cycle_log, summary)
        return summary

    except Exception as e:
        logger.error(f'Unexpected error during mailbox check for user {user.pk}: {e}', exc_info=True)
        summary.discard_results()
        summary.error = str(e)
        summary.error_code = 'internal_error'
        _record_failure(state, cycle_log, summary)
        raise


def _process_message(user, raw, summary):
    try:
        if is_duplicate(user, raw):
            summary.duplicate_count += 1
            logger.debug(f"Skipping duplicate message {raw.message_id or raw.subject[:60]}")
            return
    except DatabaseError as e:
        raise PersistenceFailure(f'Duplicate check failed: {e}') from e

    try:
        classification = classify(raw)
        job_match = match(user, raw, classification)
    except Exception as e:
        logger.warning(f"Could not classify/match message {raw.message_id or raw.subject[:60]}: {e}", exc_info=True)
        classification = Classification(
            email_type=EmailEvent.TYPE_OTHER, confidence=0, metadata={'error': str(e)[:500]}
        )
        job_match = NO_MATCH
        summary.failed_count += 1

    result = reconcile(user, raw, classification, job_match)
    if result is None:
        summary.duplicate_count += 1
        return

    summary.processed_count += 1
    if result.event.job_id is not None:
        summary.matched_count += 1
    if result.transition:
        summary.status_updates.append(result.transition)


def _finish_log(cycle_log, summary, status):
    cycle_log.fetched_count = summary.fetched_count
    cycle_log.processed_count = summary.processed_count
    cycle_log.duplicate_count = summary.duplicate_count
    cycle_log.matched_count = summary.matched_count
    cycle_log.status_update_count = len(summary.status_updates)
    cycle_log.failed_count = summary.failed_count
    cycle_log.status = status
    cycle_log.error_code = summary.error_code or ''
    cycle_log.error_message = (summary.error or '')[:1000]
    cycle_log.completed_at = timezone.now()
    cycle_log.save()


def _record_failure(state, cycle_log, summary):
    now = timezone.now()
    try:
        MonitoringState.objects.filter(pk=state.pk).update(
            last_error=(summary.error or '')[:1000],
            last_error_at=now,
            consecutive_failures=F('consecutive_failures') + 1,
            updated_at=now,
        )
        _finish_log(cycle_log, summary, MonitorCycleLog.STATUS_ERROR)
    except DatabaseError as e:
        logger.error(f'Could not record mailbox check failure for state {state.pk}: {e}', exc_info=True)

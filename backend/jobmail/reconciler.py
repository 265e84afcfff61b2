"""
Status reconciliation: persist the EmailEvent and advance the linked job.

Job status only moves forward. ``next_status`` is the whole policy; anything
it does not list leaves the job untouched. The event insert and the status
change share one savepoint, so either both are visible or neither is.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from jobmail.conf import get_setting
from jobmail.dedup import build_dedup_key
from jobmail.exceptions import PersistenceFailure
from jobmail.models import EmailEvent, Job, JobStatusChange
from jobmail.signals import notify_email_event_recorded

logger = logging.getLogger(__name__)

NON_TERMINAL = (Job.STATUS_VIEWED, Job.STATUS_APPLIED, Job.STATUS_ASSESSMENT, Job.STATUS_INTERVIEWING)

# (current status, email type) -> new status
TRANSITIONS = {
    (Job.STATUS_VIEWED, EmailEvent.TYPE_APPLICATION_CONFIRMATION): Job.STATUS_APPLIED,
    (Job.STATUS_APPLIED, EmailEvent.TYPE_APPLICATION_CONFIRMATION): Job.STATUS_APPLIED,
    (Job.STATUS_APPLIED, EmailEvent.TYPE_ASSESSMENT): Job.STATUS_ASSESSMENT,
    (Job.STATUS_INTERVIEWING, EmailEvent.TYPE_ASSESSMENT): Job.STATUS_ASSESSMENT,
    (Job.STATUS_APPLIED, EmailEvent.TYPE_INTERVIEW_INVITE): Job.STATUS_INTERVIEWING,
    (Job.STATUS_ASSESSMENT, EmailEvent.TYPE_INTERVIEW_INVITE): Job.STATUS_INTERVIEWING,
}
for _status in NON_TERMINAL:
    TRANSITIONS[(_status, EmailEvent.TYPE_REJECTION)] = Job.STATUS_REJECTED
    TRANSITIONS[(_status, EmailEvent.TYPE_OFFER)] = Job.STATUS_OFFER


def next_status(current, email_type):
    """Status the job should hold after an email of ``email_type``; ``current`` when unchanged."""
    if current in Job.TERMINAL_STATUSES:
        return current
    return TRANSITIONS.get((current, email_type), current)


@dataclass
class ReconcileResult:
    event: EmailEvent
    transition: Optional[dict] = None


def reconcile(user, raw, classification, match, processed_at=None):
    """Write the event (and any status change) for one message.

    Returns None when the insert loses a race against an identical message
    (the unique constraints fire); raises ``PersistenceFailure`` on any other
    database error.
    """
    processed_at = processed_at or timezone.now()
    metadata = dict(classification.metadata)
    metadata.update({
        'matched_by': match.matched_by,
        'previous_status': None,
        'new_status': None,
        'job_status_updated': False,
    })

    try:
        with transaction.atomic():
            job = None
            old_status = new_status = None
            if match.job_id is not None:
                job = Job.objects.select_for_update().filter(pk=match.job_id, user=user).first()
                if job is None:
                    logger.warning(f"Matched job {match.job_id} disappeared before reconciliation; recording unlinked")
                    metadata['matched_by'] = None

            if job is not None:
                old_status = job.application_status
                new_status = next_status(old_status, classification.email_type)
                metadata['previous_status'] = old_status
                metadata['new_status'] = new_status
                if new_status != old_status:
                    job.application_status = new_status
                    job.save(update_fields=['application_status', 'updated_at'])
                    metadata['job_status_updated'] = True

            event = EmailEvent.objects.create(
                user=user,
                job=job,
                message_id=raw.message_id or None,
                dedup_key=build_dedup_key(raw.subject, raw.from_address, raw.received_at),
                subject=raw.subject or '',
                from_address=raw.from_address or '',
                received_at=raw.received_at,
                processed_at=processed_at,
                body_excerpt=(raw.body_text or '')[:get_setting('BODY_EXCERPT_CHARS')],
                email_type=classification.email_type,
                confidence=classification.confidence,
                metadata=metadata,
            )

            transition = None
            if metadata['job_status_updated']:
                JobStatusChange.objects.create(
                    job=job, email_event=event, old_status=old_status, new_status=new_status
                )
                transition = {
                    'job_id': job.pk,
                    'event_id': str(event.pk),
                    'from_status': old_status,
                    'to_status': new_status,
                }

            transaction.on_commit(lambda: notify_email_event_recorded(event, transition))
    except IntegrityError:
        logger.info(f"Duplicate message skipped on insert: '{(raw.subject or '')[:60]}' from {raw.from_address}")
        return None
    except DatabaseError as e:
        logger.error(f"Failed to persist email event for user {user.pk}: {e}", exc_info=True)
        raise PersistenceFailure(f"Could not save email event: {e}") from e

    return ReconcileResult(event=event, transition=transition)

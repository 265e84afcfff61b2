"""Post-commit notifications for recorded email events.

Receivers run after the cycle's transaction commits and can never roll it
back; their failures are logged and otherwise ignored.
"""
import logging

from django.dispatch import Signal, receiver

from jobmail.models import EmailEvent

logger = logging.getLogger(__name__)

# kwargs: event (EmailEvent), transition (dict or None)
email_event_recorded = Signal()


def notify_email_event_recorded(event, transition=None):
    responses = email_event_recorded.send_robust(sender=EmailEvent, event=event, transition=transition)
    for handler, response in responses:
        if isinstance(response, Exception):
            logger.error(
                f"email_event_recorded receiver {getattr(handler, '__name__', handler)} failed for event {event.pk}: {response}",
                exc_info=(type(response), response, response.__traceback__),
            )


@receiver(email_event_recorded, dispatch_uid='jobmail.log_email_event')
def log_email_event(sender, event, transition=None, **kwargs):
    if transition:
        logger.info(
            f"Job {transition['job_id']} moved {transition['from_status']} -> {transition['to_status']} "
            f"from email event {event.pk} ({event.email_type}, {event.confidence}%)"
        )
    else:
        logger.debug(f"Recorded email event {event.pk} ({event.email_type}) for user {event.user_id}")

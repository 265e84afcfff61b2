# backend/jobmail/models.py
from django.conf import settings
from django.db import models
from django.db.models import Q
import uuid


class Job(models.Model):
    """A tracked application, owned by a user.

    Rows are created and edited by the browser extension and the CRUD layer.
    The mailbox monitor only ever writes ``application_status``.
    """
    STATUS_VIEWED = 'viewed'
    STATUS_APPLIED = 'applied'
    STATUS_ASSESSMENT = 'assessment'
    STATUS_INTERVIEWING = 'interviewing'
    STATUS_REJECTED = 'rejected'
    STATUS_OFFER = 'offer'

    STATUS_CHOICES = [
        (STATUS_VIEWED, 'Viewed'),
        (STATUS_APPLIED, 'Applied'),
        (STATUS_ASSESSMENT, 'Assessment'),
        (STATUS_INTERVIEWING, 'Interviewing'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_OFFER, 'Offer'),
    ]
    TERMINAL_STATUSES = (STATUS_REJECTED, STATUS_OFFER)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='tracked_jobs')
    job_url = models.CharField(max_length=1000, blank=True)
    company_name = models.CharField(max_length=180)
    job_title = models.CharField(max_length=220, blank=True)
    application_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_VIEWED)
    applied_date = models.DateField(null=True, blank=True)
    last_seen_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'job_url'],
                condition=~Q(job_url=''),
                name='uniq_job_url_per_user',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'application_status'], name='jobmail_job_user_id_0c1f2a_idx'),
            models.Index(fields=['user', 'company_name'], name='jobmail_job_user_id_5b7e41_idx'),
        ]

    @property
    def is_terminal(self):
        return self.application_status in self.TERMINAL_STATUSES

    def __str__(self):
        return f"{self.company_name} - {self.job_title} ({self.application_status})"


class EmailEvent(models.Model):
    """Immutable record of one ingested mailbox message."""

    TYPE_REJECTION = 'rejection'
    TYPE_INTERVIEW_INVITE = 'interview_invite'
    TYPE_ASSESSMENT = 'assessment'
    TYPE_OFFER = 'offer'
    TYPE_APPLICATION_CONFIRMATION = 'application_confirmation'
    TYPE_FOLLOW_UP = 'follow_up'
    TYPE_NOT_JOB_RELATED = 'not_job_related'
    TYPE_OTHER = 'other'

    EMAIL_TYPE_CHOICES = [
        (TYPE_REJECTION, 'Rejection'),
        (TYPE_INTERVIEW_INVITE, 'Interview Invitation'),
        (TYPE_ASSESSMENT, 'Assessment'),
        (TYPE_OFFER, 'Offer'),
        (TYPE_APPLICATION_CONFIRMATION, 'Application Confirmation'),
        (TYPE_FOLLOW_UP, 'Follow-up'),
        (TYPE_NOT_JOB_RELATED, 'Not Job Related'),
        (TYPE_OTHER, 'Other'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='email_events')
    job = models.ForeignKey(Job, on_delete=models.SET_NULL, null=True, blank=True, related_name='email_events')

    # Source identity; null for feeds that expose no stable identifier
    message_id = models.CharField(max_length=255, null=True, blank=True)
    dedup_key = models.CharField(max_length=700)

    subject = models.TextField(blank=True)
    from_address = models.CharField(max_length=320, blank=True)
    received_at = models.DateTimeField()
    processed_at = models.DateTimeField()
    body_excerpt = models.TextField(blank=True)

    email_type = models.CharField(max_length=30, choices=EMAIL_TYPE_CHOICES, default=TYPE_OTHER)
    confidence = models.PositiveSmallIntegerField(default=0)  # 0-100
    # deadline, assessment_link, inferred_company, inferred_job_title, job_status_updated, ...
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-received_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'message_id'],
                condition=Q(message_id__isnull=False),
                name='uniq_email_event_message_id',
            ),
            models.UniqueConstraint(
                fields=['user', 'dedup_key'],
                condition=Q(message_id__isnull=True),
                name='uniq_email_event_dedup_key',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'dedup_key'], name='jobmail_ema_user_id_3d2c8e_idx'),
            models.Index(fields=['user', '-received_at'], name='jobmail_ema_user_id_9a41b0_idx'),
            models.Index(fields=['job', '-received_at'], name='jobmail_ema_job_id_7c5d13_idx'),
            models.Index(fields=['user', 'email_type'], name='jobmail_ema_user_id_e28f67_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError('EmailEvent records are immutable once created')
        return super().save(*args, **kwargs)

    @property
    def job_status_updated(self):
        return bool((self.metadata or {}).get('job_status_updated'))

    def __str__(self):
        return f"{self.subject[:50]} - {self.from_address} ({self.email_type})"


class JobStatusChange(models.Model):
    """History of job status changes applied from email, for auditing and analytics."""
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name='status_changes')
    email_event = models.ForeignKey(
        EmailEvent, on_delete=models.SET_NULL, null=True, blank=True, related_name='status_changes'
    )
    old_status = models.CharField(max_length=20, choices=Job.STATUS_CHOICES)
    new_status = models.CharField(max_length=20, choices=Job.STATUS_CHOICES)
    changed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-changed_at']
        indexes = [
            models.Index(fields=["job", "-changed_at"], name='jobmail_job_job_id_41aa90_idx'),
        ]

    def __str__(self):
        return f"{self.job_id}: {self.old_status} -> {self.new_status} @ {self.changed_at}"


class MonitoringState(models.Model):
    """Per-user mailbox monitoring state.

    ``running`` doubles as the per-user mutual-exclusion flag: it is only ever
    set through a conditional UPDATE (see jobmail.monitor.acquire_run_lock).
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='monitoring_state'
    )

    active = models.BooleanField(default=False)
    interval_minutes = models.PositiveIntegerField(default=5)

    # received_at of the last successfully processed message
    watermark = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    next_check_at = models.DateTimeField(null=True, blank=True)

    running = models.BooleanField(default=False)
    run_started_at = models.DateTimeField(null=True, blank=True)

    last_error = models.TextField(blank=True)
    last_error_at = models.DateTimeField(null=True, blank=True)
    consecutive_failures = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['active', 'next_check_at'], name='jobmail_mon_active_6f0e2b_idx'),
        ]

    def __str__(self):
        state = 'running' if self.running else ('active' if self.active else 'inactive')
        return f"MonitoringState({self.user_id}, {state})"


class MonitorCycleLog(models.Model):
    """Audit log for mailbox check cycles"""

    TRIGGER_SCHEDULED = 'scheduled'
    TRIGGER_MANUAL = 'manual'
    TRIGGER_CHOICES = [
        (TRIGGER_SCHEDULED, 'Scheduled'),
        (TRIGGER_MANUAL, 'Manual'),
    ]

    STATUS_RUNNING = 'running'
    STATUS_SUCCESS = 'success'
    STATUS_ERROR = 'error'

    state = models.ForeignKey(MonitoringState, on_delete=models.CASCADE, related_name='cycle_logs')
    trigger = models.CharField(max_length=20, choices=TRIGGER_CHOICES, default=TRIGGER_SCHEDULED)

    started_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    fetched_count = models.IntegerField(default=0)
    processed_count = models.IntegerField(default=0)
    duplicate_count = models.IntegerField(default=0)
    matched_count = models.IntegerField(default=0)
    status_update_count = models.IntegerField(default=0)
    failed_count = models.IntegerField(default=0)

    status = models.CharField(max_length=20, default=STATUS_RUNNING)
    error_code = models.CharField(max_length=50, blank=True)
    error_message = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['state', '-started_at'], name='jobmail_mon_state_i_2b9d7c_idx'),
        ]

    def __str__(self):
        return f"MonitorCycleLog({self.state_id}, {self.status})"

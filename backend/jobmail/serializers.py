"""
Serializers for the mailbox monitor endpoints.
"""
from rest_framework import serializers

from jobmail.conf import get_setting
from jobmail.models import EmailEvent, MonitorCycleLog, MonitoringState
from jobmail.monitor import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class MonitoringStateSerializer(serializers.ModelSerializer):
    class Meta:
        model = MonitoringState
        fields = [
            'active', 'interval_minutes', 'watermark', 'last_checked_at', 'next_check_at',
            'running', 'run_started_at', 'last_error', 'last_error_at', 'consecutive_failures',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class MonitorCycleLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = MonitorCycleLog
        fields = [
            'id', 'trigger', 'status', 'started_at', 'completed_at',
            'fetched_count', 'processed_count', 'duplicate_count', 'matched_count',
            'status_update_count', 'failed_count', 'error_code', 'error_message',
        ]
        read_only_fields = fields


class EmailEventSerializer(serializers.ModelSerializer):
    job_id = serializers.IntegerField(read_only=True, allow_null=True)
    job_company = serializers.SerializerMethodField()
    job_title = serializers.SerializerMethodField()
    job_status_updated = serializers.BooleanField(read_only=True)

    class Meta:
        model = EmailEvent
        fields = [
            'id', 'job_id', 'job_company', 'job_title', 'message_id', 'subject', 'from_address',
            'received_at', 'processed_at', 'email_type', 'confidence', 'metadata',
            'job_status_updated', 'body_excerpt',
        ]
        read_only_fields = fields

    def get_job_company(self, obj):
        return obj.job.company_name if obj.job_id else None

    def get_job_title(self, obj):
        return obj.job.job_title if obj.job_id else None


class StartMonitoringSerializer(serializers.Serializer):
    interval_minutes = serializers.IntegerField(required=False)

    def validate_interval_minutes(self, value):
        low, high = get_setting('MIN_INTERVAL_MINUTES'), get_setting('MAX_INTERVAL_MINUTES')
        if not low <= value <= high:
            raise serializers.ValidationError(f'Must be between {low} and {high}.')
        return value


class EmailEventFilterSerializer(serializers.Serializer):
    email_type = serializers.ChoiceField(choices=EmailEvent.EMAIL_TYPE_CHOICES, required=False)
    job_id = serializers.IntegerField(required=False)
    matched = serializers.BooleanField(required=False, allow_null=True, default=None)
    status_updated = serializers.BooleanField(required=False, allow_null=True, default=None)
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)
    search = serializers.CharField(required=False, allow_blank=True)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=MAX_PAGE_SIZE, default=DEFAULT_PAGE_SIZE)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)


class BulkDeleteSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False, max_length=500)

from django.contrib import admin

from jobmail.models import EmailEvent, Job, JobStatusChange, MonitorCycleLog, MonitoringState


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ('company_name', 'job_title', 'user', 'application_status', 'applied_date', 'updated_at')
    list_filter = ('application_status',)
    search_fields = ('company_name', 'job_title', 'job_url', 'user__username')


@admin.register(EmailEvent)
class EmailEventAdmin(admin.ModelAdmin):
    list_display = ('subject', 'from_address', 'user', 'email_type', 'confidence', 'job', 'received_at')
    list_filter = ('email_type',)
    search_fields = ('subject', 'from_address', 'message_id', 'user__username')
    date_hierarchy = 'received_at'

    # Events are immutable once recorded
    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(JobStatusChange)
class JobStatusChangeAdmin(admin.ModelAdmin):
    list_display = ('job', 'old_status', 'new_status', 'email_event', 'changed_at')
    list_filter = ('new_status',)


@admin.register(MonitoringState)
class MonitoringStateAdmin(admin.ModelAdmin):
    list_display = ('user', 'active', 'interval_minutes', 'running', 'last_checked_at', 'next_check_at', 'consecutive_failures')
    list_filter = ('active', 'running')
    search_fields = ('user__username',)


@admin.register(MonitorCycleLog)
class MonitorCycleLogAdmin(admin.ModelAdmin):
    list_display = ('state', 'trigger', 'status', 'started_at', 'processed_count', 'status_update_count', 'error_code')
    list_filter = ('status', 'trigger')

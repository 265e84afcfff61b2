from django.urls import path

from jobmail import views

urlpatterns = [
    path('monitoring/start/', views.monitoring_start, name='jobmail-monitoring-start'),
    path('monitoring/stop/', views.monitoring_stop, name='jobmail-monitoring-stop'),
    path('monitoring/check-now/', views.monitoring_check_now, name='jobmail-monitoring-check-now'),
    path('monitoring/status/', views.monitoring_status, name='jobmail-monitoring-status'),
    path('monitoring/logs/', views.monitoring_logs, name='jobmail-monitoring-logs'),
    path('email-events/', views.email_event_list, name='jobmail-email-events'),
    path('email-events/stats/', views.email_event_stats, name='jobmail-email-event-stats'),
    path('email-events/bulk-delete/', views.email_event_bulk_delete, name='jobmail-email-events-bulk-delete'),
    path('email-events/<uuid:event_id>/', views.email_event_delete, name='jobmail-email-event-delete'),
]

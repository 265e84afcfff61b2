"""
REST endpoints for mailbox monitoring and the recorded email events.

Every view is scoped to ``request.user``. Engine errors (AlreadyRunning,
EmailEventNotFound, ...) propagate to ``custom_exception_handler``.
"""
import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from jobmail import monitor
from jobmail.serializers import (
    BulkDeleteSerializer,
    EmailEventFilterSerializer,
    EmailEventSerializer,
    MonitorCycleLogSerializer,
    MonitoringStateSerializer,
    StartMonitoringSerializer,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MONITORING
# =============================================================================


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def monitoring_start(request):
    """Start periodic mailbox checks for the current user"""
    serializer = StartMonitoringSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    state = monitor.start_monitoring(request.user, serializer.validated_data.get('interval_minutes'))
    return Response(MonitoringStateSerializer(state).data, status=status.HTTP_200_OK)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def monitoring_stop(request):
    """Stop periodic mailbox checks"""
    state = monitor.stop_monitoring(request.user)
    return Response(MonitoringStateSerializer(state).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def monitoring_check_now(request):
    """Run a mailbox check immediately and return its summary"""
    summary = monitor.check_now(request.user)
    if summary.error:
        # Recorded on the state; the client decides whether to retry
        return Response(
            {'error': {'code': summary.error_code, 'message': summary.error}, 'summary': summary.to_dict()},
            status=status.HTTP_503_SERVICE_UNAVAILABLE if summary.error_code == 'mailbox_unavailable'
            else status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return Response(summary.to_dict())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def monitoring_status(request):
    """Get monitoring status for the current user"""
    state = monitor.get_monitoring_status(request.user)
    return Response(MonitoringStateSerializer(state).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def monitoring_logs(request):
    """Get the 20 most recent check cycles"""
    state = monitor.get_monitoring_status(request.user)
    logs = state.cycle_logs.order_by('-started_at', '-id')[:20]
    return Response(MonitorCycleLogSerializer(logs, many=True).data)


# =============================================================================
# EMAIL EVENTS
# =============================================================================


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def email_event_list(request):
    """List recorded email events with filters and limit/offset paging"""
    filters = EmailEventFilterSerializer(data=request.query_params.dict())
    filters.is_valid(raise_exception=True)

    events, total = monitor.list_email_events(request.user, filters.validated_data)
    return Response({
        'count': total,
        'limit': filters.validated_data['limit'],
        'offset': filters.validated_data['offset'],
        'results': EmailEventSerializer(events, many=True).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def email_event_stats(request):
    """Email event breakdown for the analytics dashboard"""
    try:
        days = int(request.query_params.get('days', 30))
    except ValueError:
        return Response(
            {'error': {'code': 'validation_error', 'message': 'days must be an integer'}},
            status=status.HTTP_400_BAD_REQUEST,
        )
    days = max(1, min(days, 365))
    return Response(monitor.email_event_stats(request.user, days=days))


@api_view(['DELETE'])
@permission_classes([IsAuthenticated])
def email_event_delete(request, event_id):
    """Delete one email event"""
    monitor.delete_email_event(request.user, event_id)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def email_event_bulk_delete(request):
    """Delete several email events; ids that are not the user's are ignored"""
    serializer = BulkDeleteSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    deleted = monitor.bulk_delete_email_events(request.user, serializer.validated_data['ids'])
    return Response({'deleted': deleted})

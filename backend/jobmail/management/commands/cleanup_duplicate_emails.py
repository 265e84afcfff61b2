"""
Management command to remove duplicate email events, keeping the first one recorded
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from jobmail.models import EmailEvent


class Command(BaseCommand):
    help = 'Delete email events that share a dedup key (same subject, sender and day) with an earlier event'

    def add_arguments(self, parser):
        parser.add_argument('--user', help='Only clean up events of this username')
        parser.add_argument('--dry-run', action='store_true', help='Report duplicates without deleting them')

    def handle(self, *args, **options):
        events = EmailEvent.objects.all()
        if options.get('user'):
            events = events.filter(user__username=options['user'])

        seen = set()
        duplicate_ids = []
        rows = events.order_by('user_id', 'dedup_key', 'processed_at', 'id').values_list('id', 'user_id', 'dedup_key')
        for event_id, user_id, dedup_key in rows:
            key = (user_id, dedup_key)
            if key in seen:
                duplicate_ids.append(event_id)
            else:
                seen.add(key)

        if not duplicate_ids:
            self.stdout.write(self.style.SUCCESS('No duplicate email events found'))
            return

        self.stdout.write(f'Found {len(duplicate_ids)} duplicate email event(s)')
        if options['dry_run']:
            self.stdout.write(self.style.WARNING('Dry run: nothing deleted'))
            return

        with transaction.atomic():
            _, per_model = EmailEvent.objects.filter(pk__in=duplicate_ids).delete()
        deleted = per_model.get(EmailEvent._meta.label, 0)

        self.stdout.write(
            self.style.SUCCESS(
                f'Cleanup complete. Deleted {deleted} duplicate email event(s); {events.count()} remaining'
            )
        )

"""
Management command to run one mailbox check cycle for a user
"""
import json

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from jobmail import monitor
from jobmail.exceptions import AlreadyRunning


class Command(BaseCommand):
    help = 'Check the mailbox of one user now and print the cycle summary'

    def add_arguments(self, parser):
        parser.add_argument('--user', required=True, help='Username whose mailbox is checked')

    def handle(self, *args, **options):
        User = get_user_model()
        try:
            user = User.objects.get(username=options['user'])
        except User.DoesNotExist:
            raise CommandError(f"User '{options['user']}' does not exist")

        try:
            summary = monitor.check_now(user)
        except AlreadyRunning as e:
            raise CommandError(e.message)

        self.stdout.write(json.dumps(summary.to_dict(), indent=2, default=str))
        if summary.error:
            raise CommandError(f'{summary.error_code}: {summary.error}')

        self.stdout.write(
            self.style.SUCCESS(
                f'Processed {summary.processed_count} email(s), '
                f'{len(summary.status_updates)} job status update(s)'
            )
        )

from django.apps import AppConfig


class JobMailConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'jobmail'
    verbose_name = 'Job Mail Monitor'

    def ready(self):
        # Connect the email-event notification receivers.
        from . import signals  # noqa: F401

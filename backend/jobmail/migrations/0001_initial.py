from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Job',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('job_url', models.CharField(blank=True, max_length=1000)),
                ('company_name', models.CharField(max_length=180)),
                ('job_title', models.CharField(blank=True, max_length=220)),
                ('application_status', models.CharField(choices=[('viewed', 'Viewed'), ('applied', 'Applied'), ('assessment', 'Assessment'), ('interviewing', 'Interviewing'), ('rejected', 'Rejected'), ('offer', 'Offer')], default='viewed', max_length=20)),
                ('applied_date', models.DateField(blank=True, null=True)),
                ('last_seen_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tracked_jobs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['user', 'application_status'], name='jobmail_job_user_id_0c1f2a_idx'),
                    models.Index(fields=['user', 'company_name'], name='jobmail_job_user_id_5b7e41_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('job_url', ''), _negated=True), fields=('user', 'job_url'), name='uniq_job_url_per_user'),
                ],
            },
        ),
        migrations.CreateModel(
            name='EmailEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('message_id', models.CharField(blank=True, max_length=255, null=True)),
                ('dedup_key', models.CharField(max_length=700)),
                ('subject', models.TextField(blank=True)),
                ('from_address', models.CharField(blank=True, max_length=320)),
                ('received_at', models.DateTimeField()),
                ('processed_at', models.DateTimeField()),
                ('body_excerpt', models.TextField(blank=True)),
                ('email_type', models.CharField(choices=[('rejection', 'Rejection'), ('interview_invite', 'Interview Invitation'), ('assessment', 'Assessment'), ('offer', 'Offer'), ('application_confirmation', 'Application Confirmation'), ('follow_up', 'Follow-up'), ('not_job_related', 'Not Job Related'), ('other', 'Other')], default='other', max_length=30)),
                ('confidence', models.PositiveSmallIntegerField(default=0)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('job', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='email_events', to='jobmail.job')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='email_events', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-received_at'],
                'indexes': [
                    models.Index(fields=['user', 'dedup_key'], name='jobmail_ema_user_id_3d2c8e_idx'),
                    models.Index(fields=['user', '-received_at'], name='jobmail_ema_user_id_9a41b0_idx'),
                    models.Index(fields=['job', '-received_at'], name='jobmail_ema_job_id_7c5d13_idx'),
                    models.Index(fields=['user', 'email_type'], name='jobmail_ema_user_id_e28f67_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('message_id__isnull', False)), fields=('user', 'message_id'), name='uniq_email_event_message_id'),
                    models.UniqueConstraint(condition=models.Q(('message_id__isnull', True)), fields=('user', 'dedup_key'), name='uniq_email_event_dedup_key'),
                ],
            },
        ),
        migrations.CreateModel(
            name='JobStatusChange',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('old_status', models.CharField(choices=[('viewed', 'Viewed'), ('applied', 'Applied'), ('assessment', 'Assessment'), ('interviewing', 'Interviewing'), ('rejected', 'Rejected'), ('offer', 'Offer')], max_length=20)),
                ('new_status', models.CharField(choices=[('viewed', 'Viewed'), ('applied', 'Applied'), ('assessment', 'Assessment'), ('interviewing', 'Interviewing'), ('rejected', 'Rejected'), ('offer', 'Offer')], max_length=20)),
                ('changed_at', models.DateTimeField(auto_now_add=True)),
                ('email_event', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='status_changes', to='jobmail.emailevent')),
                ('job', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_changes', to='jobmail.job')),
            ],
            options={
                'ordering': ['-changed_at'],
                'indexes': [
                    models.Index(fields=['job', '-changed_at'], name='jobmail_job_job_id_41aa90_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MonitoringState',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('active', models.BooleanField(default=False)),
                ('interval_minutes', models.PositiveIntegerField(default=5)),
                ('watermark', models.DateTimeField(blank=True, null=True)),
                ('last_checked_at', models.DateTimeField(blank=True, null=True)),
                ('next_check_at', models.DateTimeField(blank=True, null=True)),
                ('running', models.BooleanField(default=False)),
                ('run_started_at', models.DateTimeField(blank=True, null=True)),
                ('last_error', models.TextField(blank=True)),
                ('last_error_at', models.DateTimeField(blank=True, null=True)),
                ('consecutive_failures', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='monitoring_state', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['active', 'next_check_at'], name='jobmail_mon_active_6f0e2b_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MonitorCycleLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('trigger', models.CharField(choices=[('scheduled', 'Scheduled'), ('manual', 'Manual')], default='scheduled', max_length=20)),
                ('started_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('fetched_count', models.IntegerField(default=0)),
                ('processed_count', models.IntegerField(default=0)),
                ('duplicate_count', models.IntegerField(default=0)),
                ('matched_count', models.IntegerField(default=0)),
                ('status_update_count', models.IntegerField(default=0)),
                ('failed_count', models.IntegerField(default=0)),
                ('status', models.CharField(default='running', max_length=20)),
                ('error_code', models.CharField(blank=True, max_length=50)),
                ('error_message', models.TextField(blank=True)),
                ('state', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cycle_logs', to='jobmail.monitoringstate')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['state', '-started_at'], name='jobmail_mon_state_i_2b9d7c_idx'),
                ],
            },
        ),
    ]

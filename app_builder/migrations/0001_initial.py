import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='BuildSession',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('sandbox_id', models.CharField(blank=True, db_index=True, max_length=64)),
                ('kind', models.CharField(
                    choices=[('generate', 'GENERATE'), ('modify', 'MODIFY')],
                    max_length=16
                )),
                ('prompt', models.TextField(blank=True)),
                ('status', models.CharField(
                    choices=[('running', 'RUNNING'), ('complete', 'COMPLETE'), ('failed', 'FAILED')],
                    default='running',
                    max_length=16
                )),
                ('exit_code', models.IntegerField(blank=True, null=True)),
                ('error_message', models.TextField(blank=True)),
                ('event_count', models.PositiveIntegerField(default=0)),
                ('started_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['-started_at'],
                'indexes': [
                    models.Index(fields=['sandbox_id', '-started_at'], name='build_sess_sandbox_idx'),
                ],
            },
        ),
    ]

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import server.apps.transfers.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Transfer',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('target_key', models.CharField(help_text='Key relative to the owner namespace', max_length=1024)),
                ('storage_key', models.CharField(help_text='Full object key: {user_id}/{target_key}', max_length=1024)),
                ('total_size', models.BigIntegerField(help_text='Declared file size in bytes')),
                ('part_size', models.BigIntegerField(help_text='Declared part size in bytes')),
                ('status', models.CharField(choices=[('initiated', 'Initiated'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('aborted', 'Aborted')], db_index=True, default='initiated', max_length=16)),
                ('upload_id', models.CharField(blank=True, default='', help_text='Object store multipart session identifier', max_length=1024)),
                ('committed_etag', models.CharField(blank=True, default='', max_length=128)),
                ('committed_size', models.BigIntegerField(blank=True, help_text='Size of the assembled object in bytes', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True, db_index=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transfers', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Transfer',
                'verbose_name_plural': 'Transfers',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'modified_at'], name='transfers_status_mod_idx')],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(total_size__gt=0), name='transfers_total_size_positive'),
                    models.CheckConstraint(condition=models.Q(part_size__gt=0), name='transfers_part_size_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PartRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('part_index', models.PositiveIntegerField()),
                ('byte_offset', models.BigIntegerField()),
                ('size_bytes', models.BigIntegerField()),
                ('checksum_sha256', models.CharField(help_text='SHA256 of the part content', max_length=64)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('stored', 'Stored')], default='pending', max_length=16)),
                ('part_token', models.CharField(blank=True, default='', help_text='ETag returned by the object store', max_length=128)),
                ('stored_at', models.DateTimeField(blank=True, null=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('transfer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='parts', to='transfers.transfer')),
            ],
            options={
                'verbose_name': 'Part',
                'verbose_name_plural': 'Parts',
                'ordering': ['transfer', 'part_index'],
                'constraints': [
                    models.UniqueConstraint(fields=('transfer', 'part_index'), name='parts_transfer_index_unique'),
                    models.CheckConstraint(condition=models.Q(part_index__gte=1), name='parts_index_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserQuota',
            fields=[
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='quota', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('quota_bytes', models.BigIntegerField(default=server.apps.transfers.models._default_quota_bytes, help_text='Storage quota limit in bytes')),
                ('used_bytes', models.BigIntegerField(default=0, help_text='Committed storage in bytes')),
            ],
            options={
                'verbose_name': 'User Quota',
                'verbose_name_plural': 'User Quotas',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(quota_bytes__gte=0), name='transfer_quota_bytes_non_negative'),
                    models.CheckConstraint(condition=models.Q(used_bytes__gte=0), name='transfer_used_bytes_non_negative'),
                ],
            },
        ),
    ]

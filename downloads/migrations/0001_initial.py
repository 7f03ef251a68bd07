import django.db.models.deletion
import django.utils.timezone
import downloads.utils
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('catalog', '0001_initial'),
        ('orders', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='RateLimitRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('identifier', models.CharField(max_length=255)),
                ('endpoint', models.CharField(max_length=64)),
                ('window_start', models.DateTimeField(default=django.utils.timezone.now)),
                ('request_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('identifier', 'endpoint'), name='rate_limit_identifier_endpoint')],
            },
        ),
        migrations.CreateModel(
            name='DownloadToken',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('token', models.CharField(default=downloads.utils.token_32, max_length=64, unique=True)),
                ('download_count', models.PositiveIntegerField(default=0)),
                ('expires_at', models.DateTimeField(default=downloads.utils.token_expiry)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('positional', models.BooleanField(default=False)),
                ('audio_file', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='download_tokens', to='catalog.audiofile')),
                ('document_file', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='download_tokens', to='catalog.documentfile')),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='download_tokens', to='orders.order')),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='download_tokens', to='catalog.product')),
            ],
            options={
                'ordering': ('created_at', 'id'),
                'indexes': [models.Index(fields=['order', 'product'], name='download_token_order_product')],
                'constraints': [models.CheckConstraint(condition=models.Q(('document_file__isnull', True), ('audio_file__isnull', True), _connector='OR'), name='download_token_single_file')],
            },
        ),
    ]

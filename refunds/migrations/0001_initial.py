import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('orders', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Refund',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('razorpay_payment_id', models.CharField(blank=True, default='', max_length=64)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(default='INR', max_length=8)),
                ('reason', models.CharField(choices=[('email_bounced', 'Email bounced'), ('customer_request', 'Customer request')], default='email_bounced', max_length=32)),
                ('failed_email', models.EmailField(blank=True, default='', max_length=254)),
                ('status', models.CharField(choices=[('eligible', 'Eligible'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed')], db_index=True, default='eligible', max_length=16)),
                ('error_message', models.TextField(blank=True, default='')),
                ('razorpay_refund_id', models.CharField(blank=True, default='', max_length=64)),
                ('whatsapp_sent', models.BooleanField(default=False)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('processed_by', models.CharField(blank=True, default='', max_length=150)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='refund', to='orders.order')),
            ],
            options={
                'ordering': ('-created_at',),
            },
        ),
    ]

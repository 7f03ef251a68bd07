from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

ENVIRONMENT = 'test'

# Provider credentials are resolved per test through override_settings / Setting rows.
RESEND_API_KEY = ''
RESEND_WEBHOOK_SECRET = ''
RAZORPAY_KEY_ID = ''
RAZORPAY_KEY_SECRET = ''
WHATSAPP_ACCESS_TOKEN = ''
WHATSAPP_PHONE_NUMBER_ID = ''

DELIVERY_PART_INTERVAL_SECONDS = 0

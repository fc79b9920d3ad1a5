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

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
EMAIL_FAIL_SILENTLY = False
PAYMENTS_EMAIL_ENABLED = True

RAZORPAY = {
    'BASE_URL': 'https://api.razorpay.test',
    'KEY_ID': 'rzp_test_key',
    'KEY_SECRET': 'test-key-secret',
    'WEBHOOK_SECRET': 'test-webhook-secret',
    'CURRENCY': 'INR',
    'TIMEOUT': 5,
}

AUTH_JWT = {
    'SECRET': 'test-jwt-secret',
    'ALGORITHM': 'HS256',
    'EXPIRES_MINUTES': 60,
}

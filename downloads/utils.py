import secrets, datetime
from django.utils import timezone

TOKEN_TTL_DAYS = 7


def token_32():
    return secrets.token_urlsafe(32)


def token_expiry(days=TOKEN_TTL_DAYS):
    return timezone.now() + datetime.timedelta(days=days)


def client_ip(request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("CF-Connecting-IP") or request.META.get("REMOTE_ADDR") or "unknown"

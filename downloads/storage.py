"""Signed URLs for files kept in the managed object storage bucket."""
import logging
from urllib.parse import quote, unquote

import requests
from django.conf import settings
from requests import RequestException

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 300


class StorageError(Exception): pass


def _bucket() -> str:
    return getattr(settings, "OBJECT_STORAGE_BUCKET", "product-files")


def is_managed_url(url: str) -> bool:
    """Files uploaded to our bucket; anything else is a legacy external link."""
    base = (getattr(settings, "OBJECT_STORAGE_URL", "") or "").rstrip("/")
    if not url or not base:
        return False
    return url.startswith(base) and f"/{_bucket()}/" in url


def object_path(url: str) -> str:
    marker = f"/{_bucket()}/"
    path = url.split(marker, 1)[1] if marker in url else ""
    return unquote(path.split("?", 1)[0])


def create_signed_url(path: str, expires_in: int = SIGNED_URL_TTL_SECONDS) -> str:
    base = (settings.OBJECT_STORAGE_URL or "").rstrip("/")
    key = settings.OBJECT_STORAGE_SERVICE_KEY
    if not base or not key:
        raise StorageError("Object storage is not configured")
    if not path:
        raise StorageError("Empty object path")

    url = f"{base}/object/sign/{_bucket()}/{quote(path)}"
    headers = {
        "Authorization": f"Bearer {key}",
        "apikey": key,
        "Content-Type": "application/json",
    }
    try:
        resp = requests.post(url, json={"expiresIn": expires_in}, headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS)
    except RequestException as e:
        raise StorageError(f"Storage request failed: {e}")
    try: data = resp.json()
    except ValueError: data = {"raw": resp.text}
    if resp.status_code != 200:
        raise StorageError(f"Signing failed: HTTP {resp.status_code} {str(data)[:300]}")

    signed = data.get("signedURL") or data.get("signedUrl") or ""
    if not signed:
        raise StorageError("Storage response did not include a signed URL")
    if signed.startswith("http"):
        return signed
    return f"{base}{signed if signed.startswith('/') else '/' + signed}"

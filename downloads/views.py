import logging

from django.db import DatabaseError
from django.http import HttpResponseRedirect, JsonResponse
from django.views.decorators.http import require_GET

from .models import MAX_DOWNLOADS
from .ratelimit import check_rate_limit
from .services import (
    FileNotAvailable, TokenExpired, TokenNotFound,
    bump_product_downloads, consume_download, resolve_file, validate_token,
)
from .storage import StorageError, create_signed_url, is_managed_url, object_path
from .utils import client_ip

logger = logging.getLogger(__name__)

RATE_LIMIT_ENDPOINT = "download-file"
RATE_LIMIT_MAX_REQUESTS = 10
RATE_LIMIT_WINDOW_SECONDS = 60


def _error(message, status, **extra):
    return JsonResponse({"error": message, **extra}, status=status)


def _quota_exceeded(used):
    return _error("Maximum download limit reached", 429, downloads_used=used, max_downloads=MAX_DOWNLOADS)


@require_GET
def download_file(request):
    value = (request.GET.get("token") or "").strip()
    if not value:
        return _error("Download token is required", 400)

    identifier = f"{client_ip(request)}:{value[:8]}"
    try:
        allowed = check_rate_limit(identifier, RATE_LIMIT_ENDPOINT, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)
    except DatabaseError:
        logger.exception("Rate limit check failed for %s; allowing request", identifier)
        allowed = True
    if not allowed:
        logger.warning("Rate limit exceeded for download: %s", identifier)
        resp = _error(
            "Too many download attempts. Please wait a moment before trying again.",
            429,
            retry_after=RATE_LIMIT_WINDOW_SECONDS,
        )
        resp["Retry-After"] = str(RATE_LIMIT_WINDOW_SECONDS)
        return resp

    try:
        token = validate_token(value)
    except TokenNotFound:
        return _error("Invalid or expired download token", 404)
    except TokenExpired:
        return _error("Download link has expired", 410)

    if token.is_exhausted:
        return _quota_exceeded(token.download_count)

    try:
        product_file = resolve_file(token)
    except FileNotAvailable as e:
        logger.error("No file for token %s… (product %s): %s", value[:8], token.product_id, e)
        return _error("Product file not available", 404)

    managed = is_managed_url(product_file.file_url)
    signed_url = None
    if managed:
        try:
            signed_url = create_signed_url(object_path(product_file.file_url))
        except StorageError:
            logger.exception("Could not sign %s for token %s…", product_file.file_name, value[:8])
            return _error("Failed to generate download link", 500)

    if not consume_download(token):
        return _quota_exceeded(MAX_DOWNLOADS)
    bump_product_downloads(token.product_id)

    if managed:
        logger.info("Redirecting token %s… to signed URL for %s", value[:8], product_file.file_name)
        return HttpResponseRedirect(signed_url)

    # Legacy externally hosted files are returned as JSON instead of a redirect.
    logger.warning("Serving external URL for %s; migrate it to object storage", product_file.file_name)
    return JsonResponse({
        "success": True,
        "download_url": product_file.file_url,
        "product_name": token.product.name,
        "downloads_remaining": token.downloads_remaining,
        "message": "Click the download URL to get your file",
    })

import json
import logging

import requests
from django.conf import settings
from requests import RequestException
from requests.auth import HTTPBasicAuth

logger = logging.getLogger(__name__)


class RazorpayError(Exception): pass
class RazorpayUnavailable(RazorpayError): pass


def create_refund(payment_id: str, amount_minor: int, notes: dict, *, key_id: str, key_secret: str) -> dict:
    """Normal-speed refund against a captured payment; returns the refund entity."""
    url = f"{settings.RAZORPAY_BASE_URL.rstrip('/')}/payments/{payment_id}/refund"
    payload = {"amount": amount_minor, "speed": "normal", "notes": notes}
    try:
        resp = requests.post(url, json=payload, auth=HTTPBasicAuth(key_id, key_secret), timeout=settings.HTTP_TIMEOUT_SECONDS)
    except RequestException as e:
        raise RazorpayUnavailable(f"Gateway request failed: {e}")
    try: data = resp.json()
    except ValueError: data = {"raw": resp.text}

    if resp.status_code == 200 and data.get("id"):
        return data
    error = data.get("error") if isinstance(data.get("error"), dict) else {}
    description = error.get("description") or "Refund failed"
    logger.warning("Razorpay refund for %s rejected: HTTP %s %s", payment_id, resp.status_code, json.dumps(data)[:800])
    if resp.status_code >= 500:
        raise RazorpayUnavailable(description)
    raise RazorpayError(description)

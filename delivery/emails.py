import logging

import requests
from django.conf import settings
from django.db.models import F
from django.template.loader import render_to_string
from django.utils import timezone
from requests import RequestException

from orders.models import Order
from siteconfig.resolver import is_placeholder
from .models import EmailDeliveryLog

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_SUBJECT = "Your Download is Ready! 🎉"


class EmailDeliveryError(Exception): pass


def build_subject(combo_pack_name=None, part_number=None, total_parts=None) -> str:
    if part_number and total_parts:
        return f"{combo_pack_name or 'Your combo pack'} - Part {part_number} of {total_parts} 🎉"
    return DEFAULT_SUBJECT


def send_download_email(order, customer_email, customer_name, links, *, product=None,
                        combo_pack_name=None, part_number=None, total_parts=None, config,
                        count_attempt=True) -> dict:
    """Email a table of download links through Resend.

    ``links`` is a list of ``{"name": ..., "url": ...}``. When email is
    switched off or the API key is a placeholder nothing leaves the process
    and the result carries a ``preview`` instead of a provider id.
    Callers that count delivery attempts themselves pass ``count_attempt=False``.
    """
    subject = build_subject(combo_pack_name, part_number, total_parts)
    ctx = {
        "order": order,
        "customer_name": customer_name,
        "links": links,
        "combo_pack_name": combo_pack_name,
        "part_number": part_number,
        "total_parts": total_parts,
    }

    api_key = config.get("resend_api_key", "")
    if not config.get_bool("email_enabled", True) or is_placeholder(api_key):
        logger.warning("Email to %s for order %s simulated (disabled or placeholder key)", customer_email, order.order_number)
        return {
            "success": True,
            "simulated": True,
            "message": "Test mode - email simulated",
            "preview": {"to": customer_email, "subject": subject, "downloadLinks": links},
        }

    payload = {
        "from": config.get("resend_from_email", settings.RESEND_FROM_EMAIL),
        "to": [customer_email],
        "subject": subject,
        "html": render_to_string("emails/download_links.html", ctx),
        "text": render_to_string("emails/download_links.txt", ctx),
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        resp = requests.post(RESEND_API_URL, json=payload, headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS)
    except RequestException as e:
        raise EmailDeliveryError(f"Email provider request failed: {e}")
    try: data = resp.json()
    except ValueError: data = {"raw": resp.text}
    if resp.status_code not in (200, 201) or not data.get("id"):
        detail = data.get("message") or f"HTTP {resp.status_code}"
        raise EmailDeliveryError(f"Failed to send email: {detail}")

    log = EmailDeliveryLog.objects.create(
        order=order,
        product=product,
        recipient_email=customer_email,
        email_type="combo_part" if part_number else "download",
        resend_email_id=data["id"],
        part_number=part_number,
        total_parts=total_parts,
    )
    # Later parts of a sequence leave the order alone.
    if part_number in (None, 1):
        updates = {"delivery_status": "email_sent", "updated_at": timezone.now()}
        if count_attempt:
            updates["delivery_attempts"] = F("delivery_attempts") + 1
        Order.objects.filter(pk=order.pk).exclude(delivery_status="refunded").update(**updates)
    logger.info("Sent download email %s to %s for order %s", data["id"], customer_email, order.order_number)
    return {"success": True, "simulated": False, "emailId": data["id"], "logId": log.pk}

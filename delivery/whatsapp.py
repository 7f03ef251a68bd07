"""WhatsApp Cloud API (Graph) template messages."""
import logging
import re

import requests
from django.conf import settings
from requests import RequestException

from siteconfig.resolver import is_placeholder

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"


class WhatsAppError(Exception): pass


def format_phone_number(phone: str) -> str:
    """Digits only, with India's 91 prefix for local numbers."""
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("0"):
        cleaned = "91" + cleaned[1:]
    if len(cleaned) == 10:
        cleaned = "91" + cleaned
    return cleaned


def _credentials(config):
    return config.get("whatsapp_access_token", ""), config.get("whatsapp_phone_number_id", "")


def is_live(config) -> bool:
    """Enabled and holding real credentials."""
    token, phone_id = _credentials(config)
    return config.get_bool("whatsapp_enabled", True) and not is_placeholder(token) and not is_placeholder(phone_id)


def send_template(phone: str, template: str, parameters, config) -> str:
    token, phone_id = _credentials(config)
    version = config.get("whatsapp_api_version", "v18.0")
    url = f"{GRAPH_API_URL}/{version}/{phone_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": phone,
        "type": "template",
        "template": {
            "name": template,
            "language": {"code": config.get("whatsapp_template_language", "en_US")},
            "components": [
                {"type": "body", "parameters": [{"type": "text", "text": str(p)} for p in parameters]},
            ],
        },
    }
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS)
    except RequestException as e:
        raise WhatsAppError(f"WhatsApp request failed: {e}")
    try: data = resp.json()
    except ValueError: data = {"raw": resp.text}

    messages = data.get("messages") or []
    if resp.status_code != 200 or not messages or not messages[0].get("id"):
        detail = (data.get("error") or {}).get("message") or f"HTTP {resp.status_code}"
        raise WhatsAppError(f"WhatsApp send failed: {detail}")
    return messages[0]["id"]


def send_download_message(order, links, config) -> dict:
    """One template message per download link. Raises ``WhatsAppError``."""
    if not order.whatsapp_optin:
        return {"success": False, "skipped": True, "reason": "no_optin"}
    if not config.get_bool("whatsapp_enabled", True):
        return {"success": False, "skipped": True, "reason": "disabled"}
    phone = format_phone_number(order.customer_phone)
    if not phone:
        return {"success": False, "skipped": True, "reason": "no_phone"}

    if not is_live(config):
        logger.warning("WhatsApp delivery for order %s simulated (placeholder credentials)", order.order_number)
        return {"success": True, "simulated": True, "preview": {"to": phone, "downloadLinks": links}}

    template = config.get("whatsapp_download_template", "download_ready")
    message_ids = [send_template(phone, template, [link["name"], link["url"]], config) for link in links]
    logger.info("Sent %s WhatsApp download messages for order %s", len(message_ids), order.order_number)
    return {"success": True, "simulated": False, "messageIds": message_ids}


def send_refund_notification(order, refund, config) -> bool:
    if not is_live(config):
        logger.info("WhatsApp refund notice for order %s skipped (disabled or placeholder credentials)", order.order_number)
        return False
    phone = format_phone_number(order.customer_phone)
    if not phone:
        return False
    template = config.get("whatsapp_refund_template", "refund_notification")
    try:
        send_template(phone, template, [order.order_number, refund.failed_email or order.customer_email], config)
    except WhatsAppError as e:
        logger.warning("Refund notification for order %s failed: %s", order.order_number, e)
        return False
    return True

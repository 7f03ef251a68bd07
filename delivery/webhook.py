import json
import logging

from django.conf import settings
from django.db import transaction
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt

from orders.models import Order
from refunds.services import create_bounce_refund
from siteconfig.resolver import ConfigResolver
from .events import (
    BouncedEvent, ComplainedEvent, DelayedEvent, DeliveredEvent,
    InformationalEvent, MalformedEvent, UnknownEvent, parse_event,
)
from .models import EmailDeliveryLog
from .utils import verify_webhook_signature

logger = logging.getLogger(__name__)


def _set_order_delivery_status(order_id, status):
    # A refunded order keeps its final status.
    Order.objects.filter(pk=order_id).exclude(delivery_status="refunded").update(
        delivery_status=status, updated_at=timezone.now()
    )


def _update_log(log, status, error_message=None):
    log.delivery_status = status
    fields = ["delivery_status", "updated_at"]
    if error_message is not None:
        log.error_message = error_message
        fields.append("error_message")
    log.save(update_fields=fields)


@transaction.atomic
def _on_bounce(log, event):
    _update_log(log, "bounced", event.message)
    refund = create_bounce_refund(log.order, log.recipient_email)
    if refund is None:
        return {"action": "logged_bounce"}
    _set_order_delivery_status(log.order_id, "bounced")
    return {"action": "refund_created", "refundId": refund.pk}


def handle_event(event) -> dict:
    if isinstance(event, InformationalEvent):
        logger.info("Received %s event - no action required", event.type)
        return {"action": "acknowledged"}
    if isinstance(event, UnknownEvent):
        logger.info("Unknown webhook event type: %s", event.type)
        return {"action": "ignored"}

    log = EmailDeliveryLog.objects.select_related("order").filter(resend_email_id=event.email_id).first()
    if log is None:
        logger.info("Email log not found for %s (%s)", event.email_id, event.type)
        return {"action": "none", "reason": "email_log_not_found"}

    if isinstance(event, BouncedEvent):
        return _on_bounce(log, event)
    if isinstance(event, ComplainedEvent):
        _update_log(log, "complained", event.message)
        _set_order_delivery_status(log.order_id, "complained")
        return {"action": "logged_complaint"}
    if isinstance(event, DeliveredEvent):
        _update_log(log, "delivered")
        _set_order_delivery_status(log.order_id, "delivered")
        return {"action": "logged_delivery"}
    if isinstance(event, DelayedEvent):
        _update_log(log, "delayed")
        return {"action": "logged_delay"}
    return {"action": "ignored"}


@csrf_exempt
def resend_webhook(request):
    if request.method != "POST":
        return JsonResponse({"error": "Method not allowed"}, status=405)

    secret = ConfigResolver.load().get("resend_webhook_secret", "")
    if secret:
        if not verify_webhook_signature(request.body, request.headers, secret):
            return JsonResponse({"error": "Invalid signature"}, status=401)
    elif settings.ENVIRONMENT == "production":
        logger.error("Webhook signing secret missing in production; rejecting delivery event")
        return JsonResponse({"error": "Invalid signature"}, status=401)
    else:
        logger.warning("Webhook signing secret not configured - skipping signature verification")

    try:
        event = parse_event(json.loads(request.body.decode("utf-8")))
    except (ValueError, UnicodeDecodeError, MalformedEvent) as e:
        return JsonResponse({"error": f"Malformed event: {e}"}, status=400)

    try:
        result = handle_event(event)
    except Exception as e:
        logger.exception("Error processing %s webhook", event.type)
        return JsonResponse({"error": str(e)}, status=500)
    return JsonResponse({"received": True, **result})

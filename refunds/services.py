import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.db import IntegrityError, transaction
from django.utils import timezone

from delivery.whatsapp import send_refund_notification
from orders.models import Order
from .models import Refund
from .razorpay import RazorpayError, RazorpayUnavailable, create_refund

logger = logging.getLogger(__name__)


class RefundError(Exception):
    def __init__(self, message, status=400):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass
class RefundOutcome:
    refund: Refund
    message: str
    whatsapp_sent: bool = False


def to_minor_units(amount) -> int:
    """Paise for a rupee amount, rounded half up (499.00 -> 49900)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _get_refund(refund_id) -> Refund:
    if refund_id in (None, ""):
        raise RefundError("Refund ID is required", 400)
    try:
        return Refund.objects.select_related("order").get(pk=refund_id)
    except (Refund.DoesNotExist, ValueError, TypeError):
        raise RefundError("Refund not found", 404)


def create_bounce_refund(order, failed_email: str):
    """Open an eligible refund for an order whose delivery bounced.

    Returns ``None`` when the order is not refundable or already has a refund.
    """
    if not order.is_refundable:
        return None
    try:
        with transaction.atomic():
            refund = Refund.objects.create(
                order=order,
                razorpay_payment_id=order.razorpay_payment_id,
                amount=order.total_amount,
                currency=order.currency or "INR",
                reason="email_bounced",
                failed_email=failed_email,
                status="eligible",
            )
    except IntegrityError:
        logger.info("Refund already exists for order %s; bounce only logged", order.order_number)
        return None
    logger.info("Refund %s opened for bounced order %s", refund.pk, order.order_number)
    return refund


def create_manual_refund(order, reason="customer_request") -> Refund:
    if order.status not in Order.REFUNDABLE_STATUSES:
        raise RefundError(f"Order is not refundable. Current status: {order.status}", 400)
    if not order.razorpay_payment_id:
        raise RefundError("Order or payment ID not found", 400)
    try:
        with transaction.atomic():
            return Refund.objects.create(
                order=order,
                razorpay_payment_id=order.razorpay_payment_id,
                amount=order.total_amount,
                currency=order.currency or "INR",
                reason=reason,
                status="eligible",
            )
    except IntegrityError:
        raise RefundError("A refund already exists for this order", 409)


def _mark_failed(refund: Refund, message: str) -> None:
    refund.status = "failed"
    refund.error_message = message
    refund.save(update_fields=["status", "error_message", "updated_at"])


def process_refund(refund_id, config, processed_by="") -> RefundOutcome:
    refund = _get_refund(refund_id)
    order = refund.order
    payment_id = refund.razorpay_payment_id or order.razorpay_payment_id
    if not payment_id:
        raise RefundError("Order or payment ID not found", 400)
    if refund.status != "eligible":
        raise RefundError(f"Refund is not eligible. Current status: {refund.status}", 400)

    # Only one caller wins the eligible -> processing transition.
    claimed = Refund.objects.filter(pk=refund.pk, status="eligible").update(
        status="processing", processed_by=processed_by, updated_at=timezone.now()
    )
    if not claimed:
        refund.refresh_from_db(fields=["status"])
        raise RefundError(f"Refund is not eligible. Current status: {refund.status}", 400)
    refund.status = "processing"
    refund.processed_by = processed_by

    key_id = config.get("razorpay_key_id", "")
    key_secret = config.get("razorpay_key_secret", "")
    if not key_id or not key_secret:
        _mark_failed(refund, "Razorpay credentials not configured")
        raise RefundError("Razorpay credentials not configured", 500)

    notes = {
        "reason": refund.reason,
        "order_number": order.order_number,
        "failed_email": refund.failed_email or "",
    }
    try:
        result = create_refund(payment_id, to_minor_units(refund.amount), notes, key_id=key_id, key_secret=key_secret)
    except RazorpayUnavailable as e:
        _mark_failed(refund, str(e))
        raise RefundError(str(e), 502)
    except RazorpayError as e:
        _mark_failed(refund, str(e))
        raise RefundError(str(e), 400)

    now = timezone.now()
    with transaction.atomic():
        refund.status = "completed"
        refund.razorpay_refund_id = result["id"]
        refund.processed_at = now
        refund.error_message = ""
        refund.save(update_fields=["status", "razorpay_refund_id", "processed_at", "error_message", "updated_at"])
        order.status = "refunded"
        order.delivery_status = "refunded"
        order.save(update_fields=["status", "delivery_status", "updated_at"])
    logger.info("Refund %s completed for order %s (%s)", refund.pk, order.order_number, result["id"])

    # Notification outcome never changes the refund's terminal state.
    whatsapp_sent = send_refund_notification(order, refund, config)
    if whatsapp_sent:
        refund.whatsapp_sent = True
        refund.save(update_fields=["whatsapp_sent", "updated_at"])
    return RefundOutcome(refund, f"Refund of ₹{refund.amount} processed successfully", whatsapp_sent)


def retry_refund(refund_id) -> Refund:
    """Put a failed refund back in the queue."""
    refund = _get_refund(refund_id)
    reopened = Refund.objects.filter(pk=refund.pk, status="failed").update(
        status="eligible", error_message="", updated_at=timezone.now()
    )
    if not reopened:
        raise RefundError(f"Only failed refunds can be retried. Current status: {refund.status}", 400)
    refund.refresh_from_db()
    logger.info("Refund %s reopened for retry", refund.pk)
    return refund

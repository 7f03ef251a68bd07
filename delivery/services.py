import logging
import time
from dataclasses import dataclass, field

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from downloads.services import FileNotAvailable, ensure_tokens, resolve_file
from orders.models import Order
from .emails import EmailDeliveryError, send_download_email
from .whatsapp import WhatsAppError, send_download_message

logger = logging.getLogger(__name__)


class OrderNotDeliverable(Exception): pass


@dataclass
class DeliveryReport:
    order_number: str
    emails: list = field(default_factory=list)
    whatsapp: dict | None = None
    delivery_status: str = "pending"

    @property
    def any_success(self) -> bool:
        return any(e.get("success") for e in self.emails) or bool(self.whatsapp and self.whatsapp.get("success"))

    def as_dict(self) -> dict:
        return {
            "order_number": self.order_number,
            "delivery_status": self.delivery_status,
            "emails": self.emails,
            "whatsapp": self.whatsapp,
        }


def download_url(token) -> str:
    return f"{settings.DOWNLOAD_BASE_URL}?token={token.token}"


def build_download_links(tokens) -> list[dict]:
    links = []
    for token in tokens:
        try:
            name = resolve_file(token).file_name
        except FileNotAvailable:
            name = token.product.name
        links.append({"name": name, "url": download_url(token)})
    return links


def _send_email(order, links, config, **kwargs) -> dict:
    try:
        return send_download_email(order, order.customer_email, order.customer_name, links, config=config, count_attempt=False, **kwargs)
    except EmailDeliveryError as e:
        logger.warning("Download email for order %s failed: %s", order.order_number, e)
        return {"success": False, "error": str(e), "part": kwargs.get("part_number")}


def dispatch_order(order, config) -> DeliveryReport:
    """Send every download link of ``order`` by email and, if opted in, WhatsApp.

    Single-file products share one email. A combo pack gets one email per
    file ("Part i of M"). A failure on one channel never stops the other.
    Only paid orders are delivered; anything else raises OrderNotDeliverable.
    """
    if not order.is_deliverable:
        raise OrderNotDeliverable(f"Order {order.order_number} is {order.status}; downloads are only sent for paid orders")
    report = DeliveryReport(order.order_number, delivery_status=order.delivery_status)
    tokens = ensure_tokens(order)
    if not tokens:
        logger.warning("Order %s has no deliverable files", order.order_number)
        return report

    by_product = {}
    for token in tokens:
        by_product.setdefault(token.product_id, []).append(token)

    standard, combos, all_links = [], [], []
    for product_tokens in by_product.values():
        links = build_download_links(product_tokens)
        all_links.extend(links)
        if len(links) > 1:
            combos.append((product_tokens[0].product, links))
        else:
            standard.append((product_tokens[0].product, links[0]))

    if standard:
        product = standard[0][0] if len(standard) == 1 else None
        report.emails.append(_send_email(order, [link for _, link in standard], config, product=product))

    interval = settings.DELIVERY_PART_INTERVAL_SECONDS
    for product, links in combos:
        total = len(links)
        for i, link in enumerate(links, start=1):
            if i > 1 and interval > 0:
                time.sleep(interval)
            report.emails.append(_send_email(
                order, [link], config,
                product=product, combo_pack_name=product.name, part_number=i, total_parts=total,
            ))

    try:
        report.whatsapp = send_download_message(order, all_links, config)
    except WhatsAppError as e:
        logger.warning("WhatsApp delivery for order %s failed: %s", order.order_number, e)
        report.whatsapp = {"success": False, "error": str(e)}

    report.delivery_status = "sent" if report.any_success else "failed"
    # A refunded order keeps its final status.
    Order.objects.filter(pk=order.pk).exclude(delivery_status="refunded").update(
        delivery_status=report.delivery_status,
        delivery_attempts=F("delivery_attempts") + 1,
        updated_at=timezone.now(),
    )
    order.refresh_from_db(fields=["delivery_status", "delivery_attempts", "updated_at"])
    report.delivery_status = order.delivery_status
    logger.info("Order %s delivery finished: %s (%s emails)", order.order_number, report.delivery_status, len(report.emails))
    return report


def resend_order(order_id, config) -> DeliveryReport:
    """Admin resend; tokens are backfilled only for products that have none."""
    order = Order.objects.get(pk=order_id)
    logger.info("Resending downloads for order %s", order.order_number)
    return dispatch_order(order, config)

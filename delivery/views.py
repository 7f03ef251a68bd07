import json
import logging

from django.db.models import Q
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from downloads.models import DownloadToken
from orders.models import Order
from siteconfig.resolver import ConfigResolver
from storefront.decorators import staff_required
from .emails import EmailDeliveryError, send_download_email
from .services import OrderNotDeliverable, download_url, resend_order

logger = logging.getLogger(__name__)


def _json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError): return None


def _find_order(value):
    """Orders are addressed by order number or primary key."""
    value = str(value or "").strip()
    if not value:
        return None
    query = Q(order_number=value)
    if value.isdigit():
        query |= Q(pk=int(value))
    return Order.objects.filter(query).first()


def _positive_int(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@csrf_exempt
@require_POST
@staff_required
def send_download_email_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"success": False, "error": "Invalid JSON body"}, status=400)
    products = body.get("products")
    customer_email = (body.get("customerEmail") or "").strip()
    if not customer_email or not isinstance(products, list) or not products:
        return JsonResponse({"success": False, "error": "customerEmail and products are required"}, status=400)

    order = _find_order(body.get("orderId"))
    if order is None:
        return JsonResponse({"success": False, "error": "Order not found"}, status=404)
    if not order.is_deliverable:
        return JsonResponse({"success": False, "error": f"Order is not paid. Current status: {order.status}"}, status=409)

    values = [p.get("downloadToken") for p in products if isinstance(p, dict)]
    tokens = {t.token: t for t in DownloadToken.objects.select_related("product").filter(order=order, token__in=[v for v in values if v])}
    links = []
    for product in products:
        token = tokens.get(product.get("downloadToken")) if isinstance(product, dict) else None
        if token is None:
            return JsonResponse({"success": False, "error": "Unknown download token for this order"}, status=400)
        links.append({"name": product.get("name") or token.product.name, "url": download_url(token)})

    part_number = total_parts = None
    if body.get("isComboPackEmail"):
        part_number = _positive_int(body.get("emailIndex"))
        total_parts = _positive_int(body.get("totalEmails"))

    try:
        result = send_download_email(
            order, customer_email, body.get("customerName") or "", links,
            combo_pack_name=body.get("comboPackName"),
            part_number=part_number,
            total_parts=total_parts,
            config=ConfigResolver.load(),
        )
    except EmailDeliveryError as e:
        logger.error("send-download-email failed for order %s: %s", order.order_number, e)
        return JsonResponse({"success": False, "error": str(e)}, status=500)
    return JsonResponse(result)


@csrf_exempt
@require_POST
@staff_required
def resend_delivery_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"success": False, "error": "Invalid JSON body"}, status=400)
    order = _find_order(body.get("orderId"))
    if order is None:
        return JsonResponse({"success": False, "error": "Order not found"}, status=404)
    try:
        report = resend_order(order.pk, ConfigResolver.load())
    except OrderNotDeliverable as e:
        logger.warning("Resend refused: %s", e)
        return JsonResponse({"success": False, "error": f"Order is not paid. Current status: {order.status}"}, status=409)
    return JsonResponse({"success": report.any_success, **report.as_dict()})

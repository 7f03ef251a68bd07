import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from siteconfig.resolver import ConfigResolver
from storefront.decorators import staff_required
from .services import RefundError, process_refund, retry_refund

logger = logging.getLogger(__name__)


def _json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError): return None


def _invalid_body():
    return JsonResponse({"success": False, "error": "Invalid JSON body"}, status=400)


@csrf_exempt
@require_POST
@staff_required
def process_refund_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return _invalid_body()
    try:
        outcome = process_refund(body.get("refundId"), ConfigResolver.load(), processed_by=request.user.get_username())
    except RefundError as e:
        return JsonResponse({"success": False, "error": e.message}, status=e.status)
    except Exception:
        logger.exception("Refund processing crashed for %s", body.get("refundId"))
        return JsonResponse({"success": False, "error": "Internal error while processing refund"}, status=500)
    return JsonResponse({
        "success": True,
        "razorpayRefundId": outcome.refund.razorpay_refund_id,
        "whatsappSent": outcome.whatsapp_sent,
        "message": outcome.message,
    })


@csrf_exempt
@require_POST
@staff_required
def retry_refund_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return _invalid_body()
    try:
        refund = retry_refund(body.get("refundId"))
    except RefundError as e:
        return JsonResponse({"success": False, "error": e.message}, status=e.status)
    return JsonResponse({"success": True, "status": refund.status, "message": "Refund is eligible again"})

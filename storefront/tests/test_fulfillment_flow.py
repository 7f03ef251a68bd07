import itertools
import json
import time
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from delivery.models import EmailDeliveryLog
from delivery.services import dispatch_order
from delivery.utils import compute_signature
from downloads.models import DownloadToken
from refunds.models import Refund
from siteconfig.models import Setting
from siteconfig.resolver import ConfigResolver
from storefront.testing import FakeResponse, make_order, make_product

STORAGE_URL = "https://store.example.com/storage/v1"
EMAIL_IDS = itertools.count(1)
SECRET = "whsec_c2lnbmluZy1zZWNyZXQtZm9yLWZsb3ctdGVzdA=="


def providers(url, **kwargs):
    if url.startswith("https://api.resend.com"):
        return FakeResponse(200, {"id": f"em_flow_{next(EMAIL_IDS)}"})
    if "/object/sign/" in url:
        return FakeResponse(200, {"signedURL": url.replace(STORAGE_URL, "") + "?token=signed"})
    if "razorpay" in url:
        return FakeResponse(200, {"id": "rfnd_flow_1"})
    raise AssertionError(f"unexpected POST {url}")


@override_settings(
    OBJECT_STORAGE_URL=STORAGE_URL,
    OBJECT_STORAGE_SERVICE_KEY="service-key",
    RESEND_WEBHOOK_SECRET=SECRET,
)
class FulfillmentFlowTests(TestCase):
    """Paid order -> delivery -> download -> bounce -> refund."""

    def setUp(self):
        Setting.objects.create(key="resend_api_key", value="re_live_flow")
        Setting.objects.create(key="razorpay_key_id", value="rzp_live_flow")
        Setting.objects.create(key="razorpay_key_secret", value="flow-secret")
        self.product = make_product(documents=2, url_base=f"{STORAGE_URL}/object/public/product-files/ca-final")
        self.order = make_order(self.product)
        self.staff = get_user_model().objects.create_user("ops", password="pw", is_staff=True)

    def _webhook(self, payload):
        body = json.dumps(payload).encode()
        ts = str(int(time.time()))
        return self.client.post(
            "/resend-webhook", data=body, content_type="application/json",
            HTTP_SVIX_ID="msg_flow", HTTP_SVIX_TIMESTAMP=ts,
            HTTP_SVIX_SIGNATURE="v1," + compute_signature(body, "msg_flow", ts, SECRET),
        )

    def test_full_lifecycle(self):
        with patch("delivery.emails.requests.post", side_effect=providers):
            report = dispatch_order(self.order, ConfigResolver.load())
        self.assertEqual(report.delivery_status, "sent")
        tokens = list(DownloadToken.objects.filter(order=self.order))
        self.assertEqual(len(tokens), 2)

        first = tokens[0]
        with patch("downloads.storage.requests.post", side_effect=providers):
            resp = self.client.get("/download-file", {"token": first.token})
            self.assertEqual(resp.status_code, 302)
            first.refresh_from_db()
            self.assertEqual(first.download_count, 1)

            codes = [self.client.get("/download-file", {"token": first.token}).status_code for _ in range(3)]
        self.assertEqual(codes.count(302), 2)
        self.assertEqual(codes[-1], 429)
        first.refresh_from_db()
        self.assertEqual(first.download_count, 3)

        email_id = EmailDeliveryLog.objects.filter(order=self.order).values_list("resend_email_id", flat=True).first()
        resp = self._webhook({
            "type": "email.bounced",
            "created_at": "2024-05-01T10:00:00Z",
            "data": {"email_id": email_id, "to": [self.order.customer_email], "bounce": {"message": "Mailbox full"}},
        })
        self.assertEqual(resp.json()["action"], "refund_created")
        refund = Refund.objects.get(order=self.order)
        self.assertEqual((refund.reason, refund.status), ("email_bounced", "eligible"))

        self.client.force_login(self.staff)
        with patch("refunds.razorpay.requests.post", side_effect=providers):
            resp = self.client.post("/process-refund", data=json.dumps({"refundId": refund.pk}), content_type="application/json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["razorpayRefundId"], "rfnd_flow_1")
        refund.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(refund.status, "completed")
        self.assertEqual(self.order.status, "refunded")

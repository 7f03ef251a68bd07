import json
from decimal import Decimal
from unittest.mock import patch

import requests
from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from requests.auth import HTTPBasicAuth

from orders.models import Order
from siteconfig.resolver import ConfigResolver
from storefront.testing import FakeResponse, make_order
from .models import Refund
from .services import RefundError, create_manual_refund, process_refund, retry_refund, to_minor_units

RAZORPAY = {"razorpay_key_id": "rzp_test_1DP5mmOlF5G5ag", "razorpay_key_secret": "s3cr3t"}
WHATSAPP = {"whatsapp_access_token": "EAAG-live-token", "whatsapp_phone_number_id": "1234567890"}


def gateway(refund_status=200, refund_payload=None, whatsapp_ok=True):
    """requests.post stand-in routing Razorpay and Graph calls."""
    def post(url, **kwargs):
        if "razorpay" in url:
            return FakeResponse(refund_status, refund_payload if refund_payload is not None else {"id": "rfnd_1", "status": "processed"})
        if whatsapp_ok:
            return FakeResponse(200, {"messages": [{"id": "wamid.1"}]})
        return FakeResponse(400, {"error": {"message": "template not approved"}})
    return post


class MinorUnitsTests(SimpleTestCase):
    def test_conversion(self):
        self.assertEqual(to_minor_units(Decimal("499.00")), 49900)
        self.assertEqual(to_minor_units(Decimal("19.99")), 1999)
        self.assertEqual(to_minor_units("0.29"), 29)
        self.assertEqual(to_minor_units(Decimal("10.005")), 1001)


class ProcessRefundTests(TestCase):
    def setUp(self):
        self.order = make_order()
        self.refund = Refund.objects.create(
            order=self.order,
            razorpay_payment_id="pay_123",
            amount=Decimal("499.00"),
            reason="email_bounced",
            failed_email="asha@example.com",
        )

    def test_success_completes_refund_and_order(self):
        with patch("refunds.razorpay.requests.post", side_effect=gateway()) as post:
            outcome = process_refund(self.refund.pk, ConfigResolver(RAZORPAY), processed_by="ops")

        self.assertEqual(outcome.message, "Refund of ₹499.00 processed successfully")
        self.assertFalse(outcome.whatsapp_sent)
        url = post.call_args.args[0]
        self.assertEqual(url, "https://api.razorpay.com/v1/payments/pay_123/refund")
        self.assertEqual(post.call_args.kwargs["json"], {
            "amount": 49900,
            "speed": "normal",
            "notes": {"reason": "email_bounced", "order_number": "SOA-1001", "failed_email": "asha@example.com"},
        })
        self.assertEqual(post.call_args.kwargs["auth"], HTTPBasicAuth("rzp_test_1DP5mmOlF5G5ag", "s3cr3t"))

        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "completed")
        self.assertEqual(self.refund.razorpay_refund_id, "rfnd_1")
        self.assertIsNotNone(self.refund.processed_at)
        self.assertEqual(self.refund.processed_by, "ops")
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.delivery_status), ("refunded", "refunded"))

    def test_whatsapp_notification_recorded(self):
        with patch("refunds.razorpay.requests.post", side_effect=gateway()):
            outcome = process_refund(self.refund.pk, ConfigResolver({**RAZORPAY, **WHATSAPP}))
        self.assertTrue(outcome.whatsapp_sent)
        self.refund.refresh_from_db()
        self.assertTrue(self.refund.whatsapp_sent)

    def test_whatsapp_failure_keeps_refund_completed(self):
        with patch("refunds.razorpay.requests.post", side_effect=gateway(whatsapp_ok=False)):
            outcome = process_refund(self.refund.pk, ConfigResolver({**RAZORPAY, **WHATSAPP}))
        self.assertFalse(outcome.whatsapp_sent)
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "completed")

    def test_gateway_rejection(self):
        rejected = {"error": {"code": "BAD_REQUEST_ERROR", "description": "The refund amount provided is greater than amount captured"}}
        with patch("refunds.razorpay.requests.post", side_effect=gateway(400, rejected)):
            with self.assertRaises(RefundError) as ctx:
                process_refund(self.refund.pk, ConfigResolver(RAZORPAY))

        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.message, "The refund amount provided is greater than amount captured")
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "failed")
        self.assertEqual(self.refund.error_message, "The refund amount provided is greater than amount captured")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "paid")

    def test_network_error_is_502(self):
        with patch("refunds.razorpay.requests.post", side_effect=requests.ConnectionError("connection reset")):
            with self.assertRaises(RefundError) as ctx:
                process_refund(self.refund.pk, ConfigResolver(RAZORPAY))
        self.assertEqual(ctx.exception.status, 502)
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "failed")

    def test_missing_credentials_fail_the_refund(self):
        with patch("refunds.razorpay.requests.post") as post:
            with self.assertRaises(RefundError) as ctx:
                process_refund(self.refund.pk, ConfigResolver({}))
        post.assert_not_called()
        self.assertEqual(ctx.exception.status, 500)
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "failed")
        self.assertEqual(self.refund.error_message, "Razorpay credentials not configured")

    def test_not_eligible(self):
        Refund.objects.filter(pk=self.refund.pk).update(status="completed")
        with patch("refunds.razorpay.requests.post") as post:
            with self.assertRaises(RefundError) as ctx:
                process_refund(self.refund.pk, ConfigResolver(RAZORPAY))
        post.assert_not_called()
        self.assertEqual(ctx.exception.message, "Refund is not eligible. Current status: completed")

    def test_missing_and_unknown_ids(self):
        with self.assertRaises(RefundError) as ctx:
            process_refund(None, ConfigResolver(RAZORPAY))
        self.assertEqual((ctx.exception.status, ctx.exception.message), (400, "Refund ID is required"))
        with self.assertRaises(RefundError) as ctx:
            process_refund(987654, ConfigResolver(RAZORPAY))
        self.assertEqual(ctx.exception.status, 404)
        with self.assertRaises(RefundError) as ctx:
            process_refund("not-a-number", ConfigResolver(RAZORPAY))
        self.assertEqual(ctx.exception.status, 404)

    def test_missing_payment_id(self):
        Refund.objects.filter(pk=self.refund.pk).update(razorpay_payment_id="")
        Order.objects.filter(pk=self.order.pk).update(razorpay_payment_id="")
        with self.assertRaises(RefundError) as ctx:
            process_refund(self.refund.pk, ConfigResolver(RAZORPAY))
        self.assertEqual(ctx.exception.message, "Order or payment ID not found")


class RetryAndManualRefundTests(TestCase):
    def setUp(self):
        self.order = make_order()

    def test_retry_moves_failed_back_to_eligible(self):
        refund = Refund.objects.create(order=self.order, amount=Decimal("499.00"), status="failed", error_message="boom")
        retried = retry_refund(refund.pk)
        self.assertEqual(retried.status, "eligible")
        self.assertEqual(retried.error_message, "")

    def test_retry_only_applies_to_failed(self):
        refund = Refund.objects.create(order=self.order, amount=Decimal("499.00"), status="completed")
        with self.assertRaises(RefundError):
            retry_refund(refund.pk)
        refund.refresh_from_db()
        self.assertEqual(refund.status, "completed")

    def test_manual_refund(self):
        refund = create_manual_refund(self.order)
        self.assertEqual((refund.reason, refund.status, refund.amount), ("customer_request", "eligible", Decimal("499.00")))
        with self.assertRaises(RefundError) as ctx:
            create_manual_refund(self.order)
        self.assertEqual(ctx.exception.status, 409)

    def test_manual_refund_needs_paid_order(self):
        pending = make_order(number="SOA-2", status="pending")
        with self.assertRaises(RefundError):
            create_manual_refund(pending)


class RefundEndpointTests(TestCase):
    def setUp(self):
        self.order = make_order()
        self.refund = Refund.objects.create(order=self.order, razorpay_payment_id="pay_123", amount=Decimal("499.00"))
        self.staff = get_user_model().objects.create_user("ops", password="pw", is_staff=True)

    def _post(self, url, body):
        return self.client.post(url, data=json.dumps(body), content_type="application/json")

    def test_anonymous_is_forbidden(self):
        resp = self._post("/process-refund", {"refundId": self.refund.pk})
        self.assertEqual(resp.status_code, 403)
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "eligible")

    def test_non_staff_is_forbidden(self):
        user = get_user_model().objects.create_user("customer", password="pw")
        self.client.force_login(user)
        resp = self._post("/process-refund", {"refundId": self.refund.pk})
        self.assertEqual(resp.status_code, 403)

    def test_process_refund_endpoint(self):
        self.client.force_login(self.staff)
        with self.settings(RAZORPAY_KEY_ID="rzp_live_abc", RAZORPAY_KEY_SECRET="s3cr3t"):
            with patch("refunds.razorpay.requests.post", side_effect=gateway()):
                resp = self._post("/process-refund", {"refundId": self.refund.pk})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {
            "success": True,
            "razorpayRefundId": "rfnd_1",
            "whatsappSent": False,
            "message": "Refund of ₹499.00 processed successfully",
        })
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.processed_by, "ops")

    def test_process_refund_error_body(self):
        self.client.force_login(self.staff)
        resp = self._post("/process-refund", {})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"success": False, "error": "Refund ID is required"})

    def test_non_object_body_is_rejected(self):
        self.client.force_login(self.staff)
        for url in ("/process-refund", "/retry-refund"):
            resp = self._post(url, [self.refund.pk])
            self.assertEqual(resp.status_code, 400)
            self.assertEqual(resp.json(), {"success": False, "error": "Invalid JSON body"})
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, "eligible")

    def test_retry_endpoint(self):
        Refund.objects.filter(pk=self.refund.pk).update(status="failed")
        self.client.force_login(self.staff)
        resp = self._post("/retry-refund", {"refundId": self.refund.pk})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "eligible")

    def test_get_not_allowed(self):
        resp = self.client.get("/process-refund")
        self.assertEqual(resp.status_code, 405)

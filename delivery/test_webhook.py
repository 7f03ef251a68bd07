import base64
import json
import time

from django.test import SimpleTestCase, TestCase, override_settings

from refunds.models import Refund
from storefront.testing import make_order
from .events import BouncedEvent, InformationalEvent, MalformedEvent, UnknownEvent, parse_event
from .models import EmailDeliveryLog
from .utils import compute_signature, verify_webhook_signature

SECRET = "whsec_" + base64.b64encode(b"resend-signing-secret-for-tests").decode()


def bounce(email_id="em_1", message="Mailbox does not exist"):
    return {
        "type": "email.bounced",
        "created_at": "2024-05-01T10:00:00Z",
        "data": {"email_id": email_id, "to": ["asha@example.com"], "bounce": {"message": message}},
    }


def event(kind, email_id="em_1"):
    return {"type": kind, "created_at": "2024-05-01T10:00:00Z", "data": {"email_id": email_id, "to": ["asha@example.com"]}}


class SignatureTests(SimpleTestCase):
    body = b'{"type":"email.delivered"}'

    def _headers(self, ts, signature):
        return {"svix-id": "msg_1", "svix-timestamp": str(ts), "svix-signature": signature}

    def test_valid_signature(self):
        now = 1_700_000_000
        sig = compute_signature(self.body, "msg_1", str(now), SECRET)
        self.assertTrue(verify_webhook_signature(self.body, self._headers(now, f"v1,{sig}"), SECRET, now=now))

    def test_any_v1_candidate_may_match(self):
        now = 1_700_000_000
        sig = compute_signature(self.body, "msg_1", str(now), SECRET)
        header = f"v1,bm90LXRoZS1zaWduYXR1cmU= v1,{sig}"
        self.assertTrue(verify_webhook_signature(self.body, self._headers(now, header), SECRET, now=now))

    def test_tampered_body_is_rejected(self):
        now = 1_700_000_000
        sig = compute_signature(self.body, "msg_1", str(now), SECRET)
        self.assertFalse(verify_webhook_signature(b'{"type":"email.bounced"}', self._headers(now, f"v1,{sig}"), SECRET, now=now))

    def test_other_versions_are_ignored(self):
        now = 1_700_000_000
        sig = compute_signature(self.body, "msg_1", str(now), SECRET)
        self.assertFalse(verify_webhook_signature(self.body, self._headers(now, f"v2,{sig}"), SECRET, now=now))

    def test_stale_and_future_timestamps_are_rejected(self):
        now = 1_700_000_000
        for ts in (now - 301, now + 301):
            sig = compute_signature(self.body, "msg_1", str(ts), SECRET)
            self.assertFalse(verify_webhook_signature(self.body, self._headers(ts, f"v1,{sig}"), SECRET, now=now))

    def test_missing_headers(self):
        self.assertFalse(verify_webhook_signature(self.body, {}, SECRET))


class ParseEventTests(SimpleTestCase):
    def test_bounce(self):
        parsed = parse_event(bounce())
        self.assertIsInstance(parsed, BouncedEvent)
        self.assertEqual(parsed.email_id, "em_1")
        self.assertEqual(parsed.to, ("asha@example.com",))
        self.assertEqual(parsed.message, "Mailbox does not exist")

    def test_bounce_without_detail_gets_default_message(self):
        payload = bounce()
        del payload["data"]["bounce"]
        self.assertEqual(parse_event(payload).message, "Email bounced")

    def test_informational_and_unknown(self):
        self.assertIsInstance(parse_event({"type": "email.opened"}), InformationalEvent)
        self.assertIsInstance(parse_event({"type": "contact.created", "data": {}}), UnknownEvent)

    def test_shape_errors(self):
        for payload in ([], {}, {"type": "email.bounced"}, {"type": "email.delivered", "data": {"email_id": 5}},
                        {"type": "email.bounced", "data": {"email_id": "em_1", "bounce": "nope"}}):
            with self.assertRaises(MalformedEvent):
                parse_event(payload)


@override_settings(RESEND_WEBHOOK_SECRET=SECRET)
class ResendWebhookTests(TestCase):
    def setUp(self):
        self.order = make_order()
        self.log = EmailDeliveryLog.objects.create(order=self.order, recipient_email="asha@example.com", resend_email_id="em_1")

    def _post(self, payload, ts=None, signature=None):
        body = json.dumps(payload).encode()
        ts = str(ts if ts is not None else int(time.time()))
        if signature is None:
            signature = "v1," + compute_signature(body, "msg_1", ts, SECRET)
        return self.client.post(
            "/resend-webhook",
            data=body,
            content_type="application/json",
            HTTP_SVIX_ID="msg_1",
            HTTP_SVIX_TIMESTAMP=ts,
            HTTP_SVIX_SIGNATURE=signature,
        )

    def test_bounce_creates_eligible_refund(self):
        resp = self._post(bounce())

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["action"], "refund_created")
        refund = Refund.objects.get()
        self.assertEqual(refund.order, self.order)
        self.assertEqual(refund.status, "eligible")
        self.assertEqual(refund.reason, "email_bounced")
        self.assertEqual(refund.amount, self.order.total_amount)
        self.assertEqual(refund.failed_email, "asha@example.com")
        self.assertEqual(refund.razorpay_payment_id, "pay_123")
        self.log.refresh_from_db()
        self.assertEqual(self.log.delivery_status, "bounced")
        self.assertEqual(self.log.error_message, "Mailbox does not exist")
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "bounced")

    def test_second_bounce_for_same_order_creates_no_second_refund(self):
        EmailDeliveryLog.objects.create(order=self.order, recipient_email="asha@example.com", resend_email_id="em_2")
        self._post(bounce("em_1"))
        resp = self._post(bounce("em_2"))

        self.assertEqual(resp.json()["action"], "logged_bounce")
        self.assertEqual(Refund.objects.count(), 1)
        self.assertEqual(EmailDeliveryLog.objects.get(resend_email_id="em_2").delivery_status, "bounced")

    def test_bounce_on_unpaid_order_only_logs(self):
        self.order.status = "pending"
        self.order.save()
        resp = self._post(bounce())

        self.assertEqual(resp.json()["action"], "logged_bounce")
        self.assertFalse(Refund.objects.exists())
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "pending")

    def test_complaint_creates_no_refund(self):
        resp = self._post(event("email.complained"))

        self.assertEqual(resp.json()["action"], "logged_complaint")
        self.assertFalse(Refund.objects.exists())
        self.log.refresh_from_db()
        self.assertEqual(self.log.delivery_status, "complained")
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "complained")

    def test_delivered(self):
        resp = self._post(event("email.delivered"))
        self.assertEqual(resp.json(), {"received": True, "action": "logged_delivery"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "delivered")

    def test_delayed_only_touches_log(self):
        resp = self._post(event("email.delivery_delayed"))
        self.assertEqual(resp.json()["action"], "logged_delay")
        self.log.refresh_from_db()
        self.assertEqual(self.log.delivery_status, "delayed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "pending")

    def test_informational_events_are_acknowledged(self):
        for kind in ("email.sent", "email.opened", "email.clicked"):
            resp = self._post(event(kind))
            self.assertEqual(resp.json()["action"], "acknowledged")

    def test_unknown_event_is_ignored_with_200(self):
        resp = self._post({"type": "domain.updated", "data": {"id": "d_1"}})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["action"], "ignored")

    def test_unknown_email_id(self):
        resp = self._post(bounce("em_404"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["reason"], "email_log_not_found")
        self.assertFalse(Refund.objects.exists())

    def test_bad_signature_changes_nothing(self):
        resp = self._post(bounce(), signature="v1,bm90LXRoZS1zaWduYXR1cmU=")

        self.assertEqual(resp.status_code, 401)
        self.assertFalse(Refund.objects.exists())
        self.log.refresh_from_db()
        self.assertEqual(self.log.delivery_status, "sent")

    def test_replayed_timestamp_is_rejected(self):
        resp = self._post(bounce(), ts=int(time.time()) - 301)
        self.assertEqual(resp.status_code, 401)

    def test_malformed_event(self):
        resp = self._post({"type": "email.bounced", "data": {}})
        self.assertEqual(resp.status_code, 400)

    def test_get_not_allowed(self):
        resp = self.client.get("/resend-webhook")
        self.assertEqual(resp.status_code, 405)

    @override_settings(RESEND_WEBHOOK_SECRET="")
    def test_missing_secret_allowed_outside_production(self):
        with self.assertLogs("delivery.webhook", level="WARNING"):
            resp = self.client.post("/resend-webhook", data=json.dumps(event("email.delivered")), content_type="application/json")
        self.assertEqual(resp.status_code, 200)

    @override_settings(RESEND_WEBHOOK_SECRET="", ENVIRONMENT="production")
    def test_missing_secret_rejected_in_production(self):
        resp = self.client.post("/resend-webhook", data=json.dumps(event("email.delivered")), content_type="application/json")
        self.assertEqual(resp.status_code, 401)

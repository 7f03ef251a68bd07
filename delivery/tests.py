import itertools
import json
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from downloads.models import DownloadToken
from downloads.services import create_tokens
from siteconfig.resolver import ConfigResolver
from storefront.testing import FakeResponse, make_order, make_product
from .emails import DEFAULT_SUBJECT, EmailDeliveryError, send_download_email
from .models import EmailDeliveryLog
from .services import OrderNotDeliverable, dispatch_order, resend_order
from .whatsapp import WhatsAppError, format_phone_number, send_download_message, send_refund_notification

LIVE_EMAIL = {"resend_api_key": "re_live_abc123", "resend_from_email": "Downloads <d@example.com>"}
LIVE_WHATSAPP = {"whatsapp_access_token": "EAAG-live-token", "whatsapp_phone_number_id": "1234567890"}
LINKS = [
    {"name": "Doc 1.pdf", "url": "http://localhost:8000/download-file?token=aaa"},
    {"name": "Doc 2.pdf", "url": "http://localhost:8000/download-file?token=bbb"},
]


class Provider:
    """Stands in for requests.post across the email and WhatsApp endpoints."""

    def __init__(self, email_status=200, whatsapp_status=200):
        self.email_status = email_status
        self.whatsapp_status = whatsapp_status
        self.emails = []
        self.whatsapp = []
        self._ids = itertools.count(1)

    def __call__(self, url, **kwargs):
        n = next(self._ids)
        if url.startswith("https://api.resend.com"):
            self.emails.append(kwargs["json"])
            if self.email_status != 200:
                return FakeResponse(self.email_status, {"message": "Provider unavailable"})
            return FakeResponse(200, {"id": f"em_{n}"})
        self.whatsapp.append((url, kwargs["json"]))
        if self.whatsapp_status != 200:
            return FakeResponse(self.whatsapp_status, {"error": {"message": "Recipient not on WhatsApp"}})
        return FakeResponse(200, {"messages": [{"id": f"wamid.{n}"}]})


class SendDownloadEmailTests(TestCase):
    def setUp(self):
        self.product = make_product(documents=1)
        self.order = make_order(self.product)

    def test_placeholder_key_is_simulated(self):
        config = ConfigResolver({"resend_api_key": "re_test_dummy_key_123"})
        with patch("delivery.emails.requests.post") as post:
            result = send_download_email(self.order, "asha@example.com", "Asha", LINKS, config=config)

        post.assert_not_called()
        self.assertTrue(result["simulated"])
        self.assertEqual(result["preview"]["subject"], DEFAULT_SUBJECT)
        self.assertEqual(result["preview"]["downloadLinks"], LINKS)
        self.assertFalse(EmailDeliveryLog.objects.exists())
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "pending")

    def test_disabled_email_is_simulated(self):
        config = ConfigResolver({**LIVE_EMAIL, "email_enabled": "false"})
        with patch("delivery.emails.requests.post") as post:
            result = send_download_email(self.order, "asha@example.com", "Asha", LINKS, config=config)
        post.assert_not_called()
        self.assertTrue(result["success"])
        self.assertTrue(result["simulated"])

    def test_real_send_logs_and_marks_order(self):
        with patch("delivery.emails.requests.post", return_value=FakeResponse(200, {"id": "em_42"})) as post:
            result = send_download_email(self.order, "asha@example.com", "Asha", LINKS, product=self.product, config=ConfigResolver(LIVE_EMAIL))

        self.assertEqual(result["emailId"], "em_42")
        payload = post.call_args.kwargs["json"]
        self.assertEqual(payload["to"], ["asha@example.com"])
        self.assertEqual(payload["from"], "Downloads <d@example.com>")
        self.assertIn(LINKS[1]["url"], payload["html"])
        self.assertEqual(post.call_args.kwargs["headers"]["Authorization"], "Bearer re_live_abc123")

        log = EmailDeliveryLog.objects.get()
        self.assertEqual(log.resend_email_id, "em_42")
        self.assertEqual(log.email_type, "download")
        self.assertEqual(log.delivery_status, "sent")
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "email_sent")
        self.assertEqual(self.order.delivery_attempts, 1)

    def test_later_parts_leave_order_untouched(self):
        with patch("delivery.emails.requests.post", return_value=FakeResponse(200, {"id": "em_2"})) as post:
            send_download_email(
                self.order, "asha@example.com", "Asha", LINKS[:1],
                combo_pack_name="CA Final Combo", part_number=2, total_parts=3, config=ConfigResolver(LIVE_EMAIL),
            )

        self.assertEqual(post.call_args.kwargs["json"]["subject"], "CA Final Combo - Part 2 of 3 🎉")
        self.assertIn("Part 2 of 3", post.call_args.kwargs["json"]["html"])
        log = EmailDeliveryLog.objects.get()
        self.assertEqual((log.email_type, log.part_number, log.total_parts), ("combo_part", 2, 3))
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "pending")
        self.assertEqual(self.order.delivery_attempts, 0)

    def test_provider_rejection_raises(self):
        with patch("delivery.emails.requests.post", return_value=FakeResponse(422, {"message": "Invalid `from` field"})):
            with self.assertRaises(EmailDeliveryError) as ctx:
                send_download_email(self.order, "asha@example.com", "Asha", LINKS, config=ConfigResolver(LIVE_EMAIL))
        self.assertIn("Invalid `from` field", str(ctx.exception))
        self.assertFalse(EmailDeliveryLog.objects.exists())


class WhatsAppTests(TestCase):
    def setUp(self):
        self.order = make_order(whatsapp_optin=True)

    def test_format_phone_number(self):
        self.assertEqual(format_phone_number("09876543210"), "919876543210")
        self.assertEqual(format_phone_number("+91 98765-43210"), "919876543210")
        self.assertEqual(format_phone_number("98765 43210"), "919876543210")
        self.assertEqual(format_phone_number("14155550123"), "14155550123")
        self.assertEqual(format_phone_number(""), "")

    def test_no_optin_is_skipped(self):
        self.order.whatsapp_optin = False
        with patch("delivery.whatsapp.requests.post") as post:
            result = send_download_message(self.order, LINKS, ConfigResolver(LIVE_WHATSAPP))
        post.assert_not_called()
        self.assertFalse(result["success"])
        self.assertEqual(result["reason"], "no_optin")

    def test_placeholder_token_is_simulated(self):
        config = ConfigResolver({"whatsapp_access_token": "dummy_whatsapp_token_123", "whatsapp_phone_number_id": "1234567890"})
        with patch("delivery.whatsapp.requests.post") as post:
            result = send_download_message(self.order, LINKS, config)
        post.assert_not_called()
        self.assertTrue(result["simulated"])
        self.assertEqual(result["preview"]["to"], "919876543210")

    def test_one_template_message_per_link(self):
        provider = Provider()
        with patch("delivery.whatsapp.requests.post", side_effect=provider):
            result = send_download_message(self.order, LINKS, ConfigResolver(LIVE_WHATSAPP))

        self.assertEqual(len(result["messageIds"]), 2)
        url, payload = provider.whatsapp[0]
        self.assertEqual(url, "https://graph.facebook.com/v18.0/1234567890/messages")
        self.assertEqual(payload["to"], "919876543210")
        self.assertEqual(payload["template"]["name"], "download_ready")
        self.assertEqual(payload["template"]["language"], {"code": "en_US"})
        params = [p["text"] for p in payload["template"]["components"][0]["parameters"]]
        self.assertEqual(params, [LINKS[0]["name"], LINKS[0]["url"]])

    def test_graph_error_raises(self):
        with patch("delivery.whatsapp.requests.post", side_effect=Provider(whatsapp_status=400)):
            with self.assertRaises(WhatsAppError):
                send_download_message(self.order, LINKS, ConfigResolver(LIVE_WHATSAPP))

    def test_refund_notification(self):
        refund = type("RefundStub", (), {"failed_email": "bounced@example.com"})()
        provider = Provider()
        with patch("delivery.whatsapp.requests.post", side_effect=provider):
            self.assertTrue(send_refund_notification(self.order, refund, ConfigResolver(LIVE_WHATSAPP)))
        _, payload = provider.whatsapp[0]
        self.assertEqual(payload["template"]["name"], "refund_notification")
        params = [p["text"] for p in payload["template"]["components"][0]["parameters"]]
        self.assertEqual(params, ["SOA-1001", "bounced@example.com"])

    def test_refund_notification_failure_is_reported_not_raised(self):
        refund = type("RefundStub", (), {"failed_email": ""})()
        with patch("delivery.whatsapp.requests.post", side_effect=Provider(whatsapp_status=500)):
            with self.assertLogs("delivery.whatsapp", level="WARNING"):
                self.assertFalse(send_refund_notification(self.order, refund, ConfigResolver(LIVE_WHATSAPP)))


class DispatchOrderTests(TestCase):
    def setUp(self):
        self.notes = make_product(name="Audit Notes", documents=1)
        self.summary = make_product(name="Tax Summary", documents=0, audio=1)
        self.combo = make_product(name="CA Final Combo", documents=2, audio=1)
        self.order = make_order(self.notes, self.summary, self.combo)

    def test_single_file_products_share_one_email_and_combo_gets_parts(self):
        provider = Provider()
        with patch("delivery.emails.requests.post", side_effect=provider):
            report = dispatch_order(self.order, ConfigResolver({**LIVE_EMAIL, "whatsapp_enabled": "false"}))

        subjects = [e["subject"] for e in provider.emails]
        self.assertEqual(subjects, [
            DEFAULT_SUBJECT,
            "CA Final Combo - Part 1 of 3 🎉",
            "CA Final Combo - Part 2 of 3 🎉",
            "CA Final Combo - Part 3 of 3 🎉",
        ])
        self.assertIn("Doc 1.pdf", provider.emails[0]["html"])
        self.assertIn("Track 1.mp3", provider.emails[0]["html"])
        self.assertEqual(report.delivery_status, "sent")
        self.assertEqual(DownloadToken.objects.filter(order=self.order).count(), 5)

        parts = EmailDeliveryLog.objects.filter(email_type="combo_part").order_by("part_number")
        self.assertEqual([(p.part_number, p.total_parts) for p in parts], [(1, 3), (2, 3), (3, 3)])
        self.assertTrue(all(p.product_id == self.combo.pk for p in parts))
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "sent")

    def test_one_attempt_counted_per_dispatch(self):
        second_combo = make_product(name="Inter Combo", documents=2)
        order = make_order(self.notes, self.combo, second_combo, number="SOA-1002")
        with patch("delivery.emails.requests.post", side_effect=Provider()):
            dispatch_order(order, ConfigResolver(LIVE_EMAIL))

        self.assertEqual(EmailDeliveryLog.objects.filter(order=order).count(), 6)
        order.refresh_from_db()
        self.assertEqual(order.delivery_attempts, 1)

    def test_unpaid_orders_are_not_delivered(self):
        for i, status in enumerate(("pending", "failed", "refunded")):
            order = make_order(self.notes, number=f"SOA-30{i}", status=status)
            with patch("delivery.emails.requests.post") as post:
                with self.assertRaises(OrderNotDeliverable):
                    dispatch_order(order, ConfigResolver(LIVE_EMAIL))
            post.assert_not_called()
            self.assertFalse(DownloadToken.objects.filter(order=order).exists())
            order.refresh_from_db()
            self.assertEqual(order.delivery_attempts, 0)

    def test_refunded_delivery_status_is_kept(self):
        self.order.delivery_status = "refunded"
        self.order.save()
        with patch("delivery.emails.requests.post", side_effect=Provider()):
            report = dispatch_order(self.order, ConfigResolver(LIVE_EMAIL))

        self.assertEqual(report.delivery_status, "refunded")
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "refunded")

    def test_resend_command_skips_unpaid_orders(self):
        make_order(self.notes, number="SOA-3100", status="pending")
        out = StringIO()
        with self.assertRaises(CommandError):
            call_command("resend_downloads", "SOA-3100", stdout=out)
        self.assertIn("only sent for paid orders", out.getvalue())
        self.assertFalse(DownloadToken.objects.filter(order__order_number="SOA-3100").exists())

    def test_email_failure_does_not_block_whatsapp(self):
        self.order.whatsapp_optin = True
        self.order.save()
        provider = Provider(email_status=500)
        with patch("delivery.emails.requests.post", side_effect=provider):
            report = dispatch_order(self.order, ConfigResolver({**LIVE_EMAIL, **LIVE_WHATSAPP}))

        self.assertFalse(any(e["success"] for e in report.emails))
        self.assertTrue(report.whatsapp["success"])
        self.assertEqual(len(provider.whatsapp), 5)
        self.assertEqual(report.delivery_status, "sent")

    def test_all_channels_failing_marks_order_failed(self):
        self.order.whatsapp_optin = True
        self.order.save()
        with patch("delivery.emails.requests.post", side_effect=Provider(email_status=500, whatsapp_status=500)):
            report = dispatch_order(self.order, ConfigResolver({**LIVE_EMAIL, **LIVE_WHATSAPP}))

        self.assertEqual(report.delivery_status, "failed")
        self.assertIn("error", report.whatsapp)
        self.order.refresh_from_db()
        self.assertEqual(self.order.delivery_status, "failed")

    def test_order_without_files_is_left_pending(self):
        empty = make_order(make_product(name="Coming soon", documents=0), number="SOA-2000")
        with patch("delivery.emails.requests.post") as post:
            report = dispatch_order(empty, ConfigResolver(LIVE_EMAIL))
        post.assert_not_called()
        self.assertEqual(report.delivery_status, "pending")

    def test_repeated_resend_reuses_tokens(self):
        config = ConfigResolver({"resend_api_key": "re_test_dummy"})
        first = resend_order(self.order.pk, config)
        second = resend_order(self.order.pk, config)

        self.assertEqual(DownloadToken.objects.filter(order=self.order).count(), 5)
        links = lambda report: [link for e in report.emails for link in e["preview"]["downloadLinks"]]
        self.assertEqual(links(first), links(second))

    def test_resend_backfills_legacy_order_only_where_missing(self):
        existing = create_tokens(self.order, self.notes)
        resend_order(self.order.pk, ConfigResolver({"resend_api_key": "re_test_dummy"}))

        self.assertEqual(list(DownloadToken.objects.filter(product=self.notes)), existing)
        self.assertEqual(DownloadToken.objects.filter(product=self.combo).count(), 3)


class DeliveryEndpointTests(TestCase):
    def setUp(self):
        self.product = make_product(documents=1)
        self.order = make_order(self.product)
        self.token = create_tokens(self.order, self.product)[0]
        self.staff = get_user_model().objects.create_user("ops", password="pw", is_staff=True)

    def _post(self, url, body):
        return self.client.post(url, data=json.dumps(body), content_type="application/json")

    def _body(self, **extra):
        body = {
            "orderId": self.order.order_number,
            "customerEmail": "asha@example.com",
            "customerName": "Asha",
            "products": [{"name": "Doc 1.pdf", "downloadToken": self.token.token}],
        }
        body.update(extra)
        return body

    def test_staff_only(self):
        resp = self._post("/send-download-email", self._body())
        self.assertEqual(resp.status_code, 403)

    @override_settings(DOWNLOAD_BASE_URL="https://shop.example.com/download-file")
    def test_send_download_email_simulated(self):
        self.client.force_login(self.staff)
        resp = self._post("/send-download-email", self._body())

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["simulated"])
        self.assertEqual(
            body["preview"]["downloadLinks"],
            [{"name": "Doc 1.pdf", "url": f"https://shop.example.com/download-file?token={self.token.token}"}],
        )

    def test_combo_part_fields_are_forwarded(self):
        self.client.force_login(self.staff)
        with patch("delivery.emails.requests.post", return_value=FakeResponse(200, {"id": "em_9"})):
            with override_settings(RESEND_API_KEY="re_live_abc123"):
                resp = self._post("/send-download-email", self._body(
                    isComboPackEmail=True, comboPackName="CA Final Combo", emailIndex=2, totalEmails=2,
                ))
        self.assertEqual(resp.status_code, 200)
        log = EmailDeliveryLog.objects.get()
        self.assertEqual((log.part_number, log.total_parts), (2, 2))

    def test_token_from_another_order_is_rejected(self):
        other = make_order(self.product, number="SOA-9999")
        foreign = create_tokens(other, self.product)[0]
        self.client.force_login(self.staff)
        resp = self._post("/send-download-email", self._body(products=[{"name": "x", "downloadToken": foreign.token}]))
        self.assertEqual(resp.status_code, 400)

    def test_provider_failure_is_500(self):
        self.client.force_login(self.staff)
        with patch("delivery.emails.requests.post", return_value=FakeResponse(500, {"message": "down"})):
            with override_settings(RESEND_API_KEY="re_live_abc123"):
                resp = self._post("/send-download-email", self._body())
        self.assertEqual(resp.status_code, 500)
        self.assertFalse(resp.json()["success"])

    def test_resend_delivery(self):
        self.client.force_login(self.staff)
        resp = self._post("/resend-delivery", {"orderId": self.order.pk})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["delivery_status"], "sent")

    def test_resend_delivery_refused_for_unpaid_order(self):
        pending = make_order(self.product, number="SOA-3200", status="pending")
        self.client.force_login(self.staff)
        with self.assertLogs("delivery.views", level="WARNING"):
            resp = self._post("/resend-delivery", {"orderId": pending.order_number})

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"], "Order is not paid. Current status: pending")
        self.assertFalse(DownloadToken.objects.filter(order=pending).exists())

    def test_send_download_email_refused_for_refunded_order(self):
        self.order.status = "refunded"
        self.order.save()
        self.client.force_login(self.staff)
        with patch("delivery.emails.requests.post") as post:
            resp = self._post("/send-download-email", self._body())
        self.assertEqual(resp.status_code, 409)
        post.assert_not_called()

    def test_non_object_body_is_rejected(self):
        self.client.force_login(self.staff)
        for body in ([self.order.pk], "SOA-1001"):
            resp = self._post("/resend-delivery", body)
            self.assertEqual(resp.status_code, 400)

    def test_resend_delivery_unknown_order(self):
        self.client.force_login(self.staff)
        resp = self._post("/resend-delivery", {"orderId": "SOA-0000"})
        self.assertEqual(resp.status_code, 404)

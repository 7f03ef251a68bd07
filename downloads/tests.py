from datetime import timedelta
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.utils import timezone

from catalog.models import DocumentFile
from orders.models import OrderItem
from storefront.testing import FakeResponse, legacy_tokens, make_order, make_product
from .models import DownloadToken, RateLimitRecord
from .ratelimit import check_rate_limit, cleanup_rate_limits
from .services import (
    FileNotAvailable, TokenExpired, consume_download, create_tokens, ensure_tokens, resolve_file, validate_token,
)
from .storage import is_managed_url, object_path

STORAGE_URL = "https://store.example.com/storage/v1"


class RateLimitTests(TestCase):
    def test_eleventh_request_in_window_is_denied(self):
        results = [check_rate_limit("1.2.3.4:abcdefgh", "download-file", 10, 60) for _ in range(11)]
        self.assertEqual(results, [True] * 10 + [False])

    def test_window_elapsed_resets_counter(self):
        for _ in range(11):
            check_rate_limit("ip:tok", "download-file", 10, 60)
        RateLimitRecord.objects.update(window_start=timezone.now() - timedelta(seconds=61))

        self.assertTrue(check_rate_limit("ip:tok", "download-file", 10, 60))
        record = RateLimitRecord.objects.get()
        self.assertEqual(record.request_count, 1)

    def test_endpoints_are_counted_separately(self):
        for _ in range(2):
            check_rate_limit("ip:tok", "download-file", 1, 60)
        self.assertTrue(check_rate_limit("ip:tok", "other-endpoint", 1, 60))

    def test_cleanup_removes_only_stale_rows(self):
        check_rate_limit("old", "download-file", 10, 60)
        check_rate_limit("fresh", "download-file", 10, 60)
        RateLimitRecord.objects.filter(identifier="old").update(window_start=timezone.now() - timedelta(hours=30))

        self.assertEqual(cleanup_rate_limits(24), 1)
        self.assertEqual(list(RateLimitRecord.objects.values_list("identifier", flat=True)), ["fresh"])


class TokenStoreTests(TestCase):
    def setUp(self):
        self.product = make_product(documents=2, audio=1)
        self.order = make_order(self.product)

    def test_one_token_per_file_with_explicit_reference(self):
        tokens = create_tokens(self.order, self.product)

        self.assertEqual(len(tokens), 3)
        self.assertEqual([t.file.file_name for t in tokens], ["Doc 1.pdf", "Doc 2.pdf", "Track 1.mp3"])
        self.assertTrue(all(t.download_count == 0 for t in tokens))
        self.assertEqual(len({t.token for t in tokens}), 3)

    def test_tokens_expire_after_seven_days(self):
        token = create_tokens(self.order, self.product)[0]
        delta = token.expires_at - token.created_at
        self.assertAlmostEqual(delta.total_seconds(), timedelta(days=7).total_seconds(), delta=5)

    def test_ensure_tokens_is_idempotent(self):
        first = ensure_tokens(self.order)
        second = ensure_tokens(self.order)

        self.assertEqual(len(first), 3)
        self.assertEqual([t.pk for t in first], [t.pk for t in second])
        self.assertEqual(DownloadToken.objects.count(), 3)

    def test_ensure_tokens_backfills_only_missing_products(self):
        other = make_product(name="Audio Notes", documents=0, audio=2)
        OrderItem.objects.create(order=self.order, product=other, product_name=other.name, product_price=other.price)
        create_tokens(self.order, self.product)

        ensure_tokens(self.order)

        self.assertEqual(DownloadToken.objects.filter(product=self.product).count(), 3)
        self.assertEqual(DownloadToken.objects.filter(product=other).count(), 2)

    def test_validate_expired_token(self):
        token = create_tokens(self.order, self.product)[0]
        DownloadToken.objects.filter(pk=token.pk).update(expires_at=timezone.now() - timedelta(minutes=1))
        with self.assertRaises(TokenExpired):
            validate_token(token.token)


class ResolveFileTests(TestCase):
    def test_positional_mapping_documents_then_audio(self):
        product = make_product(documents=2, audio=2)
        order = make_order(product)
        tokens = legacy_tokens(order, product, 5)

        names = [resolve_file(t).file_name for t in tokens[:4]]
        self.assertEqual(names, ["Doc 1.pdf", "Doc 2.pdf", "Track 1.mp3", "Track 2.mp3"])
        with self.assertRaises(FileNotAvailable):
            resolve_file(tokens[4])

    def test_product_without_files(self):
        product = make_product(documents=0, audio=0)
        order = make_order(product)
        token = legacy_tokens(order, product, 1)[0]
        with self.assertRaises(FileNotAvailable):
            resolve_file(token)

    def test_explicit_reference_survives_reordering(self):
        product = make_product(documents=2)
        order = make_order(product)
        first, second = create_tokens(order, product)
        DocumentFile.objects.filter(file_name="Doc 1.pdf").update(file_order=5)

        self.assertEqual(resolve_file(DownloadToken.objects.get(pk=first.pk)).file_name, "Doc 1.pdf")
        self.assertEqual(resolve_file(DownloadToken.objects.get(pk=second.pk)).file_name, "Doc 2.pdf")

    def test_removed_file_is_not_replaced_by_a_sibling(self):
        product = make_product(documents=2)
        order = make_order(product)
        first, second = create_tokens(order, product)
        DocumentFile.objects.filter(file_name="Doc 1.pdf").delete()

        with self.assertRaises(FileNotAvailable):
            resolve_file(DownloadToken.objects.get(pk=first.pk))
        self.assertEqual(resolve_file(DownloadToken.objects.get(pk=second.pk)).file_name, "Doc 2.pdf")


@override_settings(OBJECT_STORAGE_URL=STORAGE_URL, OBJECT_STORAGE_SERVICE_KEY="service-key")
class StorageTests(TestCase):
    def test_managed_url_detection(self):
        managed = f"{STORAGE_URL}/object/public/product-files/packs/ca%20final.pdf"
        self.assertTrue(is_managed_url(managed))
        self.assertEqual(object_path(managed), "packs/ca final.pdf")
        self.assertFalse(is_managed_url("https://drive.example.com/files/doc1.pdf"))


class DownloadFileViewTests(TestCase):
    def setUp(self):
        self.product = make_product(documents=2)
        self.order = make_order(self.product)
        self.tokens = create_tokens(self.order, self.product)

    def _get(self, token):
        return self.client.get("/download-file", {"token": token})

    def test_missing_token(self):
        resp = self.client.get("/download-file")
        self.assertEqual(resp.status_code, 400)

    def test_unknown_token(self):
        resp = self._get("does-not-exist")
        self.assertEqual(resp.status_code, 404)

    def test_expired_token_is_gone_even_with_quota_left(self):
        token = self.tokens[0]
        DownloadToken.objects.filter(pk=token.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        resp = self._get(token.token)

        self.assertEqual(resp.status_code, 410)
        token.refresh_from_db()
        self.assertEqual(token.download_count, 0)

    def test_external_url_returns_json(self):
        resp = self._get(self.tokens[1].token)

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["download_url"], "https://drive.example.com/files/doc2.pdf")
        self.assertEqual(body["product_name"], "CA Final Combo")
        self.assertEqual(body["downloads_remaining"], 2)

    def test_quota_of_three_downloads(self):
        token = self.tokens[0]
        codes = [self._get(token.token).status_code for _ in range(4)]

        self.assertEqual(codes, [200, 200, 200, 429])
        token.refresh_from_db()
        self.assertEqual(token.download_count, 3)
        self.product.refresh_from_db()
        self.assertEqual(self.product.download_count, 3)

    def test_quota_response_reports_counts(self):
        token = self.tokens[0]
        DownloadToken.objects.filter(pk=token.pk).update(download_count=3)

        resp = self._get(token.token)

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.json()["downloads_used"], 3)
        self.assertEqual(resp.json()["max_downloads"], 3)

    def test_rate_limit_returns_retry_after(self):
        for _ in range(10):
            self._get("unknown-token")
        resp = self._get("unknown-token")

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp["Retry-After"], "60")
        self.assertEqual(resp.json()["retry_after"], 60)

    def test_rate_limiter_failure_fails_open(self):
        with patch("downloads.views.check_rate_limit", side_effect=DatabaseError("down")):
            with self.assertLogs("downloads.views", level="ERROR"):
                resp = self._get(self.tokens[0].token)
        self.assertEqual(resp.status_code, 200)

    def test_removed_file_returns_404(self):
        DocumentFile.objects.filter(file_name="Doc 1.pdf").delete()
        with self.assertLogs("downloads.views", level="ERROR"):
            resp = self._get(self.tokens[0].token)
        self.assertEqual(resp.status_code, 404)

    def test_quota_used_up_between_check_and_count(self):
        token = self.tokens[0]
        real_consume = consume_download

        def concurrent_downloads(stale):
            DownloadToken.objects.filter(pk=stale.pk).update(download_count=3)
            return real_consume(stale)

        with patch("downloads.views.consume_download", side_effect=concurrent_downloads):
            resp = self._get(token.token)

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.json()["downloads_used"], 3)
        token.refresh_from_db()
        self.assertEqual(token.download_count, 3)
        self.product.refresh_from_db()
        self.assertEqual(self.product.download_count, 0)

    def test_post_not_allowed(self):
        resp = self.client.post("/download-file?token=abc")
        self.assertEqual(resp.status_code, 405)


@override_settings(OBJECT_STORAGE_URL=STORAGE_URL, OBJECT_STORAGE_SERVICE_KEY="service-key")
class ManagedDownloadTests(TestCase):
    def setUp(self):
        self.product = make_product(documents=2, url_base=f"{STORAGE_URL}/object/public/product-files/ca-final")
        self.order = make_order(self.product)
        self.tokens = create_tokens(self.order, self.product)

    def test_redirects_to_short_lived_signed_url(self):
        signed = {"signedURL": "/object/sign/product-files/ca-final/doc1.pdf?token=sig"}
        with patch("downloads.storage.requests.post", return_value=FakeResponse(200, signed)) as post:
            resp = self.client.get("/download-file", {"token": self.tokens[0].token})

        self.assertEqual(resp.status_code, 302)
        self.assertEqual(resp["Location"], f"{STORAGE_URL}/object/sign/product-files/ca-final/doc1.pdf?token=sig")
        post.assert_called_once()
        self.assertEqual(post.call_args.args[0], f"{STORAGE_URL}/object/sign/product-files/ca-final/doc1.pdf")
        self.assertEqual(post.call_args.kwargs["json"], {"expiresIn": 300})
        self.tokens[0].refresh_from_db()
        self.assertEqual(self.tokens[0].download_count, 1)

    def test_signing_failure_does_not_consume_quota(self):
        with patch("downloads.storage.requests.post", return_value=FakeResponse(500, {"error": "boom"})):
            with self.assertLogs("downloads.views", level="ERROR"):
                resp = self.client.get("/download-file", {"token": self.tokens[0].token})

        self.assertEqual(resp.status_code, 500)
        self.tokens[0].refresh_from_db()
        self.assertEqual(self.tokens[0].download_count, 0)

    def test_repeated_fetches_stop_at_quota(self):
        signed = {"signedURL": "/object/sign/product-files/ca-final/doc1.pdf?token=sig"}
        token = self.tokens[0]
        with patch("downloads.storage.requests.post", return_value=FakeResponse(200, signed)):
            first = self.client.get("/download-file", {"token": token.token})
            rest = [self.client.get("/download-file", {"token": token.token}).status_code for _ in range(3)]

        self.assertEqual(first.status_code, 302)
        self.assertEqual(rest, [302, 302, 429])
        token.refresh_from_db()
        self.assertEqual(token.download_count, 3)

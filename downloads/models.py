from django.db import models
from django.db.models import Q
from django.utils import timezone

from .utils import token_32, token_expiry

MAX_DOWNLOADS = 3


class DownloadToken(models.Model):
    token = models.CharField(max_length=64, unique=True, default=token_32)
    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="download_tokens")
    product = models.ForeignKey("catalog.Product", on_delete=models.CASCADE, related_name="download_tokens")
    # Set at mint time. Only tokens marked positional resolve by their position among siblings.
    document_file = models.ForeignKey("catalog.DocumentFile", on_delete=models.SET_NULL, null=True, blank=True, related_name="download_tokens")
    audio_file = models.ForeignKey("catalog.AudioFile", on_delete=models.SET_NULL, null=True, blank=True, related_name="download_tokens")
    positional = models.BooleanField(default=False)
    download_count = models.PositiveIntegerField(default=0)
    expires_at = models.DateTimeField(default=token_expiry)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ("created_at", "id")
        indexes = [models.Index(fields=["order", "product"], name="download_token_order_product")]
        constraints = [
            models.CheckConstraint(
                condition=Q(document_file__isnull=True) | Q(audio_file__isnull=True),
                name="download_token_single_file",
            ),
        ]

    @property
    def is_expired(self) -> bool:
        return self.expires_at < timezone.now()

    @property
    def is_exhausted(self) -> bool:
        return self.download_count >= MAX_DOWNLOADS

    @property
    def downloads_remaining(self) -> int:
        return max(MAX_DOWNLOADS - self.download_count, 0)

    @property
    def file(self):
        return self.document_file or self.audio_file

    def __str__(self):
        return f"{self.token[:8]}… order={self.order_id} product={self.product_id} ({self.download_count}/{MAX_DOWNLOADS})"


class RateLimitRecord(models.Model):
    identifier = models.CharField(max_length=255)
    endpoint = models.CharField(max_length=64)
    window_start = models.DateTimeField(default=timezone.now)
    request_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["identifier", "endpoint"], name="rate_limit_identifier_endpoint"),
        ]

    def __str__(self):
        return f"{self.endpoint}:{self.identifier} = {self.request_count}"

from django.contrib import admin
from .models import DownloadToken, RateLimitRecord


@admin.register(DownloadToken)
class DownloadTokenAdmin(admin.ModelAdmin):
    list_display = ("short_token", "order", "product", "download_count", "positional", "expires_at", "created_at")
    search_fields = ("token", "order__order_number", "product__name")
    list_filter = ("created_at",)
    raw_id_fields = ("order", "product", "document_file", "audio_file")
    readonly_fields = ("token", "created_at")

    @admin.display(description="Token")
    def short_token(self, obj):
        return f"{obj.token[:8]}…"


@admin.register(RateLimitRecord)
class RateLimitRecordAdmin(admin.ModelAdmin):
    list_display = ("identifier", "endpoint", "request_count", "window_start")
    search_fields = ("identifier",)
    list_filter = ("endpoint",)

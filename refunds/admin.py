from django.contrib import admin, messages

from siteconfig.resolver import ConfigResolver
from .models import Refund
from .services import RefundError, process_refund, retry_refund


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "amount", "currency", "reason", "status", "whatsapp_sent", "processed_at", "created_at")
    search_fields = ("order__order_number", "razorpay_payment_id", "razorpay_refund_id", "failed_email")
    list_filter = ("status", "reason", "created_at")
    raw_id_fields = ("order",)
    readonly_fields = ("razorpay_refund_id", "processed_at", "processed_by", "whatsapp_sent", "created_at", "updated_at")
    actions = ["process_selected", "retry_selected"]

    @admin.action(description="Process selected refunds via Razorpay")
    def process_selected(self, request, queryset):
        config = ConfigResolver.load()
        for refund in queryset:
            try:
                outcome = process_refund(refund.pk, config, processed_by=request.user.get_username())
            except RefundError as e:
                self.message_user(request, f"Refund {refund.pk}: {e.message}", level=messages.ERROR)
            else:
                self.message_user(request, f"Refund {refund.pk}: {outcome.message}", level=messages.SUCCESS)

    @admin.action(description="Retry failed refunds")
    def retry_selected(self, request, queryset):
        for refund in queryset:
            try:
                retry_refund(refund.pk)
            except RefundError as e:
                self.message_user(request, f"Refund {refund.pk}: {e.message}", level=messages.WARNING)
            else:
                self.message_user(request, f"Refund {refund.pk} is eligible again", level=messages.SUCCESS)

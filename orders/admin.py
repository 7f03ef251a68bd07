from django.contrib import admin, messages

from delivery.services import OrderNotDeliverable, dispatch_order
from refunds.services import RefundError, create_manual_refund
from siteconfig.resolver import ConfigResolver
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "product_name", "product_price", "quantity", "created_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "customer_email", "total_amount", "status", "delivery_status", "delivery_attempts", "created_at")
    search_fields = ("order_number", "customer_email", "customer_phone", "razorpay_order_id", "razorpay_payment_id")
    list_filter = ("status", "delivery_status", "whatsapp_optin", "created_at")
    readonly_fields = ("created_at", "updated_at")
    inlines = [OrderItemInline]
    actions = ["resend_download_links", "create_customer_refund"]

    @admin.action(description="Resend download links")
    def resend_download_links(self, request, queryset):
        config = ConfigResolver.load()
        for order in queryset:
            try:
                report = dispatch_order(order, config)
            except OrderNotDeliverable as e:
                self.message_user(request, str(e), level=messages.WARNING)
                continue
            level = messages.SUCCESS if report.any_success else messages.ERROR
            self.message_user(request, f"{order.order_number}: delivery {report.delivery_status}", level=level)

    @admin.action(description="Create refund (customer request)")
    def create_customer_refund(self, request, queryset):
        for order in queryset:
            try:
                refund = create_manual_refund(order)
            except RefundError as e:
                self.message_user(request, f"{order.order_number}: {e.message}", level=messages.WARNING)
            else:
                self.message_user(request, f"{order.order_number}: refund {refund.pk} is eligible", level=messages.SUCCESS)
